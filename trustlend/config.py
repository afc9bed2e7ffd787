"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./trustlend.db"
    database_echo: bool = False

    # Service
    service_name: str = "trustlend-ledger"
    log_level: str = "INFO"

    # Users
    default_user_score: int = 50

    # Hashing
    short_hash_length: int = 8

    # Fraud heuristics
    fraud_window_seconds: int = 300
    fraud_high_severity_threshold: int = 3  # correlated accounts above this count are HIGH
    fraud_concentration_threshold: float = 0.5

    # Loans
    funding_window_seconds: int = 7 * 24 * 3600
    max_stake_per_supporter_pct: int = 100

    # Liquidation
    mutual_fund_available: int = 1_000_000_000  # micro-units the mutual fund may cover per liquidation


settings = Settings()

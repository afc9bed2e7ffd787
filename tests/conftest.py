"""Pytest fixtures for testing"""

import itertools
from datetime import datetime, timezone
from typing import Callable, Generator

import pytest
from sqlalchemy.orm import sessionmaker

from trustlend.config import Settings
from trustlend.domain.clock import FixedClock
from trustlend.domain.models import User, UserRole
from trustlend.infrastructure.database.session import build_session_factory
from trustlend.main import Services, create_services
from trustlend.services.ledger import LedgerService

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

# Registrations made through the `register` fixture are spaced further apart
# than the fraud window so they never correlate with each other.
REGISTRATION_SPACING_SECONDS = 3600

_wallet_numbers = itertools.count(1)


def _next_wallet() -> str:
    """Valid 0x-prefixed 40-hex-digit wallet, unique per call"""
    return f"0x{next(_wallet_numbers):040x}"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a fresh SQLite file per test"""
    return Settings(database_url=f"sqlite:///{tmp_path / 'trustlend.db'}", _env_file=None)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def services(test_settings: Settings, clock: FixedClock) -> Generator[Services, None, None]:
    """Full service graph with the baseline parameter table active"""
    services = create_services(test_settings, clock=clock)
    try:
        yield services
    finally:
        services.engine.dispose()


@pytest.fixture
def ledger(services: Services) -> LedgerService:
    return services.ledger


@pytest.fixture
def session_factory(services: Services) -> sessionmaker:
    """Raw sessions for tests that inspect or tamper with rows directly"""
    return build_session_factory(services.engine)


@pytest.fixture
def make_wallet() -> Callable[[], str]:
    return _next_wallet


@pytest.fixture
def register(ledger: LedgerService, clock: FixedClock) -> Callable[..., User]:
    def _register(role: UserRole = UserRole.BORROWER, name: str = "Test User") -> User:
        clock.advance(REGISTRATION_SPACING_SECONDS)
        return ledger.register_user(name, _next_wallet(), role)

    return _register


@pytest.fixture
def set_score(services: Services) -> Callable[[str, int], None]:
    def _set_score(user_id: str, score: int) -> None:
        with services.ledger.uow.begin() as tx:
            tx.storage.users.set_score(user_id, score)

    return _set_score


@pytest.fixture
def borrower(register) -> User:
    """Borrower with the default score of 50 (MEDIUM tier: 1800 bps, 50% coverage)"""
    return register(UserRole.BORROWER, "Borrower")


@pytest.fixture
def supporter(register) -> User:
    return register(UserRole.SUPPORTER, "Supporter")


@pytest.fixture
def second_supporter(register) -> User:
    return register(UserRole.SUPPORTER, "Second Supporter")


@pytest.fixture
def active_loan(ledger: LedgerService, borrower: User, supporter: User):
    """1,000,000 over 2 installments, fully activated by one 500,000 stake"""
    loan = ledger.create_loan(borrower.id, 1_000_000, 2)
    ledger.add_endorsement(loan.id, supporter.id, 500_000)
    return ledger.get_loan_view(loan.id).loan


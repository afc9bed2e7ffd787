"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class UserRole(str, Enum):
    BORROWER = "BORROWER"
    SUPPORTER = "SUPPORTER"
    OPERATOR = "OPERATOR"
    PROVIDER = "PROVIDER"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    UNDER_REVIEW = "UNDER_REVIEW"
    BLOCKED = "BLOCKED"


class LoanState(str, Enum):
    PROPOSED = "PROPOSED"
    FUNDING = "FUNDING"
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"
    DEFAULTED = "DEFAULTED"
    CANCELLED = "CANCELLED"
    LIQUIDATED = "LIQUIDATED"


class InstallmentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class FraudType(str, Enum):
    MULTI_ACCOUNT = "MULTI_ACCOUNT"
    CONCENTRATION = "CONCENTRATION"


class EventType(str, Enum):
    USER_REGISTERED = "USER_REGISTERED"
    ROLE_CHANGED = "ROLE_CHANGED"
    USER_STATUS_CHANGED = "USER_STATUS_CHANGED"
    FRAUD_FLAG_RAISED = "FRAUD_FLAG_RAISED"
    SCORE_RECALCULATED = "SCORE_RECALCULATED"
    LOAN_CREATED = "LOAN_CREATED"
    LOAN_STATE_CHANGED = "LOAN_STATE_CHANGED"
    ENDORSEMENT_ADDED = "ENDORSEMENT_ADDED"
    INSTALLMENTS_SCHEDULED = "INSTALLMENTS_SCHEDULED"
    INSTALLMENT_OVERDUE = "INSTALLMENT_OVERDUE"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PARAMETERS_PUBLISHED = "PARAMETERS_PUBLISHED"
    PARAMETERS_ACTIVATED = "PARAMETERS_ACTIVATED"
    WATERFALL_EXECUTED = "WATERFALL_EXECUTED"


class DecisionType(str, Enum):
    PRICING = "PRICING"
    FRAUD_MULTI_ACCOUNT = "FRAUD_MULTI_ACCOUNT"
    FRAUD_CONCENTRATION = "FRAUD_CONCENTRATION"
    SCORE_ADJUSTMENT = "SCORE_ADJUSTMENT"
    DEFAULT = "DEFAULT"
    WATERFALL = "WATERFALL"


@dataclass
class User:
    """Platform participant; wallet is stored lowercase and unique"""

    id: str
    name: str
    wallet: str
    role: UserRole
    score: int  # 0..100
    status: UserStatus
    created_at: datetime


@dataclass(frozen=True)
class PricingTier:
    """Score bucket with inclusive bounds"""

    name: str
    score_min: int
    score_max: int
    rate_bps: int  # annual rate in basis points
    max_principal: int  # micro-units
    min_coverage_pct: int

    def contains(self, score: int) -> bool:
        return self.score_min <= score <= self.score_max

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "score_min": self.score_min,
            "score_max": self.score_max,
            "rate_bps": self.rate_bps,
            "max_principal": self.max_principal,
            "min_coverage_pct": self.min_coverage_pct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricingTier":
        return cls(
            name=data["name"],
            score_min=int(data["score_min"]),
            score_max=int(data["score_max"]),
            rate_bps=int(data["rate_bps"]),
            max_principal=int(data["max_principal"]),
            min_coverage_pct=int(data["min_coverage_pct"]),
        )


@dataclass(frozen=True)
class SystemParameters:
    """Immutable, versioned parameter set; tiers are kept in table order"""

    version: str
    tiers: tuple
    grace_period_seconds: int
    installment_cadence_seconds: int
    default_after_consecutive_overdue: Optional[int] = None  # None disables automatic default
    is_active: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TierSnapshot:
    """Pricing terms copied onto a loan at creation; never recomputed"""

    tier_name: str
    rate_bps: int
    max_principal: int
    min_coverage_pct: int
    parameters_version: str

    @classmethod
    def from_tier(cls, tier: PricingTier, version: str) -> "TierSnapshot":
        return cls(
            tier_name=tier.name,
            rate_bps=tier.rate_bps,
            max_principal=tier.max_principal,
            min_coverage_pct=tier.min_coverage_pct,
            parameters_version=version,
        )


@dataclass
class Loan:
    """Borrower's loan with its pricing snapshot"""

    id: str
    borrower_id: str
    principal: int  # micro-units
    pricing: TierSnapshot
    installment_count: int
    state: LoanState
    created_at: datetime
    funding_deadline: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


@dataclass
class Installment:
    """Single payment in a repayment schedule"""

    id: str
    loan_id: str
    sequence: int  # 1-based
    amount_due: int
    status: InstallmentStatus
    due_at: datetime
    paid_at: Optional[datetime] = None


@dataclass
class Endorsement:
    """Supporter's stake backing a loan"""

    id: str
    loan_id: str
    supporter_id: str
    staked_amount: int
    created_at: datetime


@dataclass
class FraudAlert:
    """Output of a fraud heuristic; not persisted by the detector"""

    fraud_type: FraudType
    severity: Severity
    subject_user_id: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FraudFlag:
    """Persisted fraud signal against a user"""

    id: str
    user_id: str
    fraud_type: FraudType
    severity: Severity
    created_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Event:
    """Immutable record of a state change"""

    id: str
    reference_id: str
    event_type: str
    detail: Dict[str, Any]
    timestamp: datetime
    integrity_hash: str
    sequence: Optional[int] = None


@dataclass(frozen=True)
class DecisionLogEntry:
    """Immutable record of an automated judgment"""

    id: str
    decision_type: DecisionType
    inputs: Dict[str, Any]
    outputs: Dict[str, Any]
    parameters_version: str
    integrity_hash: str
    timestamp: datetime
    reference_id: Optional[str] = None


@dataclass
class LoanFigures:
    """Derived amounts for a loan; computed on read, never stored"""

    total_staked: int
    coverage_pct: float
    coverage_met: bool
    amounts_owed: int
    overdue_amount: int
    paid_amount: int


@dataclass
class LoanView:
    loan: Loan
    installments: List[Installment]
    endorsements: List[Endorsement]
    figures: LoanFigures


@dataclass
class LoanSummary:
    loan_id: str
    state: LoanState
    principal: int
    amounts_owed: int
    overdue_amount: int


@dataclass
class UserView:
    user: User
    fraud_flags: List[FraudFlag]
    borrowed: List[LoanSummary]
    endorsements: List[Endorsement]
    total_borrowed: int
    total_staked: int

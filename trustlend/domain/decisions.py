"""Typed, versioned input/output payloads for automated decisions"""

from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple

from trustlend.domain.models import DecisionType


@dataclass(frozen=True)
class DecisionPayload:
    """Base for decision inputs and outputs; serializes with a schema tag"""

    decision_type: ClassVar[DecisionType]
    schema_version: ClassVar[int] = 1

    @classmethod
    def schema(cls) -> str:
        return f"{cls.decision_type.value.lower()}/v{cls.schema_version}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["schema"] = self.schema()
        return data


@dataclass(frozen=True)
class PricingInputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.PRICING

    borrower_id: str
    score: int
    principal: int
    installment_count: int


@dataclass(frozen=True)
class PricingOutputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.PRICING

    tier_name: str
    rate_bps: int
    max_principal: int
    min_coverage_pct: int
    required_stake: int


@dataclass(frozen=True)
class MultiAccountInputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.FRAUD_MULTI_ACCOUNT

    user_id: str
    created_at: str
    window_seconds: int
    high_severity_threshold: int
    candidate_user_ids: Tuple[str, ...]


@dataclass(frozen=True)
class MultiAccountOutputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.FRAUD_MULTI_ACCOUNT

    alert: bool
    severity: Optional[str]
    correlated_user_ids: Tuple[str, ...]


@dataclass(frozen=True)
class ConcentrationInputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.FRAUD_CONCENTRATION

    loan_id: str
    stakes_by_supporter: Tuple[Tuple[str, int], ...]
    threshold: float


@dataclass(frozen=True)
class ConcentrationOutputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.FRAUD_CONCENTRATION

    alert: bool
    severity: Optional[str]
    dominant_supporter_id: Optional[str]
    concentration_ratio: float


@dataclass(frozen=True)
class ScoreAdjustmentInputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.SCORE_ADJUSTMENT

    user_id: str
    previous_score: int
    on_time_payments: int
    overdue_installments: int
    defaulted: bool
    under_review: bool


@dataclass(frozen=True)
class ScoreAdjustmentOutputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.SCORE_ADJUSTMENT

    new_score: int


@dataclass(frozen=True)
class DefaultInputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.DEFAULT

    loan_id: str
    consecutive_overdue: int
    threshold: Optional[int]
    overdue_installments: int = 0
    severely_overdue: bool = False
    operator_reason: Optional[str] = None


@dataclass(frozen=True)
class DefaultOutputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.DEFAULT

    defaulted: bool
    trigger: str = "policy"  # "policy" or "operator"


@dataclass(frozen=True)
class WaterfallInputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.WATERFALL

    loan_id: str
    outstanding_balance: int
    borrower_collateral: int
    stakes_by_supporter: Tuple[Tuple[str, int], ...]
    mutual_fund_available: int


@dataclass(frozen=True)
class WaterfallOutputs(DecisionPayload):
    decision_type: ClassVar[DecisionType] = DecisionType.WATERFALL

    collateral_used: int
    cuts_by_supporter: Tuple[Tuple[str, int], ...]
    fund_used: int
    total_recovered: int
    shortfall: int

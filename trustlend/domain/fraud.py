"""
Fraud heuristics over in-memory snapshots.

Nothing here touches storage or mutates its inputs: the caller decides whether
an alert becomes a persisted FraudFlag and whether a user goes under review.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from trustlend.domain.models import Endorsement, FraudAlert, FraudType, Severity, User
from trustlend.utils.date_utils import seconds_between

# Externally supplied correlation signal between the new account and a
# candidate registered inside the velocity window.
SimilarityCheck = Callable[[User, User], bool]

SEVERITY_WEIGHTS = {
    Severity.LOW: 10,
    Severity.MEDIUM: 25,
    Severity.HIGH: 50,
}
REVIEW_RISK_SCORE = 50
CONCENTRATION_HIGH_RATIO = 0.8


def velocity_only(new_user: User, candidate: User) -> bool:
    """Default policy: any registration inside the window correlates"""
    return True


@dataclass
class ReviewRecommendation:
    under_review: bool
    risk_score: int
    reason: str


class FraudDetector:
    """Stateless heuristics; configuration is fixed at construction"""

    def __init__(
        self,
        window_seconds: int = 300,
        high_severity_threshold: int = 3,
        concentration_threshold: float = 0.5,
        similarity: SimilarityCheck = velocity_only,
    ):
        self.window_seconds = window_seconds
        self.high_severity_threshold = high_severity_threshold
        self.concentration_threshold = concentration_threshold
        self.similarity = similarity

    def correlated_accounts(self, all_users: Sequence[User], new_user: User) -> List[User]:
        return [
            user
            for user in all_users
            if user.id != new_user.id
            and abs(seconds_between(new_user.created_at, user.created_at)) <= self.window_seconds
            and self.similarity(new_user, user)
        ]

    def detect_multi_account(self, all_users: Sequence[User], new_user_id: str) -> Optional[FraudAlert]:
        """
        Flag a registration that lands inside a burst of correlated accounts.

        Severity is HIGH when the number of correlated accounts exceeds
        high_severity_threshold, else LOW. Returns None when the user is not
        in the snapshot or nothing correlates.
        """
        new_user = next((u for u in all_users if u.id == new_user_id), None)
        if new_user is None:
            return None

        correlated = self.correlated_accounts(all_users, new_user)
        if not correlated:
            return None

        severity = Severity.HIGH if len(correlated) > self.high_severity_threshold else Severity.LOW
        return FraudAlert(
            fraud_type=FraudType.MULTI_ACCOUNT,
            severity=severity,
            subject_user_id=new_user.id,
            details={
                "window_seconds": self.window_seconds,
                "correlated_user_ids": sorted(u.id for u in correlated),
                "correlated_count": len(correlated),
            },
        )

    def detect_concentration(self, loan_id: str, endorsements: Sequence[Endorsement]) -> Optional[FraudAlert]:
        """Flag a loan where one supporter holds more than the threshold share of all stake"""
        stakes = stakes_by_supporter(endorsements)
        total = sum(stakes.values())
        if total == 0:
            return None

        # max() keeps the first supporter on ties; dicts preserve endorsement order
        dominant_id = max(stakes, key=stakes.get)
        ratio = stakes[dominant_id] / total
        if ratio <= self.concentration_threshold:
            return None

        return FraudAlert(
            fraud_type=FraudType.CONCENTRATION,
            severity=Severity.HIGH if ratio > CONCENTRATION_HIGH_RATIO else Severity.MEDIUM,
            subject_user_id=dominant_id,
            details={
                "loan_id": loan_id,
                "concentration_ratio": round(ratio, 6),
                "dominant_stake": stakes[dominant_id],
                "total_stake": total,
            },
        )


def stakes_by_supporter(endorsements: Sequence[Endorsement]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for endorsement in endorsements:
        totals[endorsement.supporter_id] = totals.get(endorsement.supporter_id, 0) + endorsement.staked_amount
    return totals


def fraud_risk_score(alerts: Sequence[FraudAlert]) -> int:
    """0-100, higher is riskier"""
    return min(100, sum(SEVERITY_WEIGHTS[alert.severity] for alert in alerts))


def should_trigger_review(alerts: Sequence[FraudAlert]) -> ReviewRecommendation:
    risk_score = fraud_risk_score(alerts)
    has_high = any(alert.severity == Severity.HIGH for alert in alerts)

    if has_high or risk_score >= REVIEW_RISK_SCORE:
        kinds = ", ".join(alert.fraud_type.value for alert in alerts)
        return ReviewRecommendation(True, risk_score, f"High fraud risk detected: {kinds}")

    return ReviewRecommendation(False, risk_score, "")

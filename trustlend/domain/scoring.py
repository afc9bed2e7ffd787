"""Borrower score adjustment - deterministic rules, no model"""

from dataclasses import dataclass

SCORE_FLOOR = 0
SCORE_CEILING = 100

ON_TIME_PAYMENT_POINTS = 2
OVERDUE_PENALTY = 3
DEFAULT_PENALTY = 10
UNDER_REVIEW_PENALTY = 5


@dataclass(frozen=True)
class ScoreChange:
    """What happened since the score was last written"""

    on_time_payments: int = 0
    overdue_installments: int = 0
    defaulted: bool = False
    under_review: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.on_time_payments or self.overdue_installments or self.defaulted or self.under_review)


def adjust_score(current: int, change: ScoreChange) -> int:
    """
    Apply one batch of servicing outcomes to a score.

    Rules:
    - +2 per installment paid on time
    - -3 per installment that went overdue
    - -10 when the loan defaulted
    - -5 while the user is under fraud review

    Each change is applied once, at the moment it happens, so repeated
    adjustments never double-count history. Result is clamped to [0, 100].
    """
    score = current
    score += change.on_time_payments * ON_TIME_PAYMENT_POINTS
    score -= change.overdue_installments * OVERDUE_PENALTY

    if change.defaulted:
        score -= DEFAULT_PENALTY

    if change.under_review:
        score -= UNDER_REVIEW_PENALTY

    return max(SCORE_FLOOR, min(SCORE_CEILING, score))

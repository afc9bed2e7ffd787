"""Installment schedule generation for activated loans"""

import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List

from trustlend.domain.models import Installment, InstallmentStatus
from trustlend.utils.date_utils import add_seconds

SECONDS_PER_YEAR = 365 * 24 * 3600
BPS_DENOMINATOR = 10_000


def total_repayable(principal: int, rate_bps: int, term_seconds: int) -> int:
    """
    Principal plus simple interest over the term, rounded half-up.

    Example:
        1,000,000 at 1400 bps over 365 days -> 1,140,000
    """
    interest = (
        Decimal(principal) * Decimal(rate_bps) * Decimal(term_seconds)
        / (Decimal(BPS_DENOMINATOR) * Decimal(SECONDS_PER_YEAR))
    )
    return int((Decimal(principal) + interest).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def generate_installment_plan(
    loan_id: str,
    principal: int,
    rate_bps: int,
    num_installments: int,
    cadence_seconds: int,
    start: datetime,
) -> List[Installment]:
    """
    Split the repayable total into equal installments.

    Requirements:
    - installment i (1-based) is due at start + i * cadence
    - last installment absorbs rounding remainder so the total is exact

    Example:
        1,000,003 over 4 -> [250000, 250000, 250000, 250003]
    """
    if num_installments <= 0 or principal <= 0:
        return []

    total = total_repayable(principal, rate_bps, num_installments * cadence_seconds)
    base_amount = total // num_installments
    remainder = total % num_installments

    installments = []
    for i in range(1, num_installments + 1):
        amount = base_amount + (remainder if i == num_installments else 0)
        installments.append(
            Installment(
                id=str(uuid.uuid4()),
                loan_id=loan_id,
                sequence=i,
                amount_due=amount,
                status=InstallmentStatus.PENDING,
                due_at=add_seconds(start, i * cadence_seconds),
            )
        )

    return installments

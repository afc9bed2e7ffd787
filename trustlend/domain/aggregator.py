"""
Loan aggregator - derived loan state and lifecycle decisions.

Coverage, amounts owed and overdue amounts are always computed from the
current endorsement and installment sets; nothing here is cached or stored.

Loan lifecycle:
    PROPOSED -> FUNDING -> ACTIVE -> REPAID | DEFAULTED
    FUNDING -> CANCELLED (deadline passed, coverage still short)
    DEFAULTED -> LIQUIDATED (loss waterfall executed)

Installment lifecycle:
    PENDING -> PAID | OVERDUE,  OVERDUE -> PAID
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from trustlend.domain.exceptions import Conflict, IntegrityViolation
from trustlend.domain.models import (
    Endorsement,
    Installment,
    InstallmentStatus,
    Loan,
    LoanFigures,
    LoanState,
)
from trustlend.utils.date_utils import seconds_between

LOAN_TRANSITIONS: Dict[LoanState, FrozenSet[LoanState]] = {
    LoanState.PROPOSED: frozenset({LoanState.FUNDING}),
    LoanState.FUNDING: frozenset({LoanState.ACTIVE, LoanState.CANCELLED}),
    LoanState.ACTIVE: frozenset({LoanState.REPAID, LoanState.DEFAULTED}),
    LoanState.REPAID: frozenset(),
    LoanState.DEFAULTED: frozenset({LoanState.LIQUIDATED}),
    LoanState.CANCELLED: frozenset(),
    LoanState.LIQUIDATED: frozenset(),
}

# Operator default needs two overdue installments, or one late by this many grace periods
MULTIPLE_OVERDUE_MIN = 2
SEVERE_OVERDUE_GRACE_MULTIPLE = 3

INSTALLMENT_TRANSITIONS: Dict[InstallmentStatus, FrozenSet[InstallmentStatus]] = {
    InstallmentStatus.PENDING: frozenset({InstallmentStatus.PAID, InstallmentStatus.OVERDUE}),
    InstallmentStatus.OVERDUE: frozenset({InstallmentStatus.PAID}),
    InstallmentStatus.PAID: frozenset(),
}

# (loan, now) -> True once the funding deadline has passed
DeadlineCheck = Callable[[Loan, datetime], bool]


def funding_deadline_passed(loan: Loan, now: datetime) -> bool:
    return loan.funding_deadline is not None and seconds_between(loan.funding_deadline, now) > 0


def check_loan_transition(current: LoanState, target: LoanState) -> None:
    if target not in LOAN_TRANSITIONS[current]:
        raise Conflict(f"loan cannot move from {current.value} to {target.value}")


def check_installment_transition(current: InstallmentStatus, target: InstallmentStatus) -> None:
    if target not in INSTALLMENT_TRANSITIONS[current]:
        raise Conflict(f"installment cannot move from {current.value} to {target.value}")


def total_staked(endorsements: Sequence[Endorsement]) -> int:
    return sum(e.staked_amount for e in endorsements)


def _require_principal(loan: Loan) -> None:
    if loan.principal <= 0:
        raise IntegrityViolation(f"loan {loan.id} has non-positive principal {loan.principal}")


def coverage_pct(loan: Loan, endorsements: Sequence[Endorsement]) -> float:
    """sum(stakes) * 100 / principal"""
    _require_principal(loan)
    return total_staked(endorsements) * 100 / loan.principal


def coverage_met(loan: Loan, endorsements: Sequence[Endorsement]) -> bool:
    """Integer comparison so 25% of 1,000,000 is met by exactly 250,000"""
    _require_principal(loan)
    return total_staked(endorsements) * 100 >= loan.principal * loan.pricing.min_coverage_pct


def is_past_grace(installment: Installment, now: datetime, grace_period_seconds: int) -> bool:
    """True strictly after due_at + grace"""
    return seconds_between(installment.due_at, now) > grace_period_seconds


def effective_status(installment: Installment, now: datetime, grace_period_seconds: int) -> InstallmentStatus:
    if installment.status == InstallmentStatus.PENDING and is_past_grace(installment, now, grace_period_seconds):
        return InstallmentStatus.OVERDUE
    return installment.status


def with_effective_status(
    installments: Sequence[Installment], now: datetime, grace_period_seconds: int
) -> List[Installment]:
    """Copies of the installments as they stand at `now`; inputs are untouched"""
    return [replace(i, status=effective_status(i, now, grace_period_seconds)) for i in installments]


def newly_overdue(installments: Sequence[Installment], now: datetime, grace_period_seconds: int) -> List[Installment]:
    """PENDING installments that must now be marked OVERDUE, in sequence order"""
    return sorted(
        (
            i
            for i in installments
            if i.status == InstallmentStatus.PENDING and is_past_grace(i, now, grace_period_seconds)
        ),
        key=lambda i: i.sequence,
    )


def amounts_owed(installments: Sequence[Installment]) -> int:
    return sum(i.amount_due for i in installments if i.status != InstallmentStatus.PAID)


def overdue_amount(installments: Sequence[Installment]) -> int:
    return sum(i.amount_due for i in installments if i.status == InstallmentStatus.OVERDUE)


def paid_amount(installments: Sequence[Installment]) -> int:
    return sum(i.amount_due for i in installments if i.status == InstallmentStatus.PAID)


@dataclass(frozen=True)
class DefaultJustification:
    """Grounds for an operator default, judged on persisted installment state"""

    overdue_installments: int
    severely_overdue: bool

    @property
    def justified(self) -> bool:
        return self.overdue_installments > 0 and (
            self.overdue_installments >= MULTIPLE_OVERDUE_MIN or self.severely_overdue
        )


def default_justification(
    installments: Sequence[Installment], now: datetime, grace_period_seconds: int
) -> DefaultJustification:
    overdue = [i for i in installments if i.status == InstallmentStatus.OVERDUE]
    severe_after = grace_period_seconds * SEVERE_OVERDUE_GRACE_MULTIPLE
    return DefaultJustification(
        overdue_installments=len(overdue),
        severely_overdue=any(seconds_between(i.due_at, now) > severe_after for i in overdue),
    )


def consecutive_overdue(installments: Sequence[Installment]) -> int:
    """Longest run of OVERDUE installments in sequence order"""
    longest = run = 0
    for installment in sorted(installments, key=lambda i: i.sequence):
        run = run + 1 if installment.status == InstallmentStatus.OVERDUE else 0
        longest = max(longest, run)
    return longest


class LoanAggregator:
    """Derived figures and transition decisions for a single loan"""

    def figures(
        self,
        loan: Loan,
        installments: Sequence[Installment],
        endorsements: Sequence[Endorsement],
    ) -> LoanFigures:
        return LoanFigures(
            total_staked=total_staked(endorsements),
            coverage_pct=coverage_pct(loan, endorsements),
            coverage_met=coverage_met(loan, endorsements),
            amounts_owed=amounts_owed(installments),
            overdue_amount=overdue_amount(installments),
            paid_amount=paid_amount(installments),
        )

    def can_activate(self, loan: Loan, endorsements: Sequence[Endorsement]) -> bool:
        return loan.state == LoanState.FUNDING and coverage_met(loan, endorsements)

    def should_cancel(
        self,
        loan: Loan,
        endorsements: Sequence[Endorsement],
        now: datetime,
        deadline_passed: DeadlineCheck = funding_deadline_passed,
    ) -> bool:
        return (
            loan.state == LoanState.FUNDING
            and deadline_passed(loan, now)
            and not coverage_met(loan, endorsements)
        )

    def is_fully_repaid(self, loan: Loan, installments: Sequence[Installment]) -> bool:
        """Safe to re-evaluate from any caller; only true while ACTIVE"""
        return (
            loan.state == LoanState.ACTIVE
            and len(installments) > 0
            and all(i.status == InstallmentStatus.PAID for i in installments)
        )

    def default_assessment(
        self,
        loan: Loan,
        installments: Sequence[Installment],
        threshold: Optional[int],
    ) -> Tuple[bool, int]:
        """(should default, consecutive overdue count); threshold None never defaults"""
        run = consecutive_overdue(installments)
        if loan.state != LoanState.ACTIVE or threshold is None:
            return False, run
        return run >= threshold, run

"""Integration tests for operator defaults and liquidation of defaulted loans"""

from datetime import timedelta

import pytest

from trustlend.domain.exceptions import Conflict, NotFound, ValidationError
from trustlend.domain.models import DecisionType, EventType, InstallmentStatus, LoanState

DAY = 86_400
GRACE = DAY


def decisions_of(ledger, loan_id, decision_type):
    return [d for d in ledger.list_decisions_for_reference(loan_id) if d.decision_type == decision_type]


def first_due(ledger, loan_id):
    return ledger.get_loan_view(loan_id).installments[0].due_at


@pytest.fixture
def defaulted_loan(ledger, active_loan, clock):
    """active_loan with both installments overdue, defaulted by an operator"""
    second_due = ledger.get_loan_view(active_loan.id).installments[1].due_at
    clock.set_time(second_due + timedelta(seconds=GRACE + 1))
    return ledger.mark_default(active_loan.id, "borrower unreachable")


def test_default_rejected_without_overdue_installments(ledger, active_loan):
    with pytest.raises(Conflict):
        ledger.mark_default(active_loan.id, "operator request")

    assert ledger.get_loan_view(active_loan.id).loan.state == LoanState.ACTIVE
    assert decisions_of(ledger, active_loan.id, DecisionType.DEFAULT) == []


def test_single_mildly_late_installment_does_not_justify_default(ledger, active_loan, clock):
    """Test one installment past grace but under three grace periods late is not enough"""
    clock.set_time(first_due(ledger, active_loan.id) + timedelta(seconds=GRACE + 1))

    with pytest.raises(Conflict):
        ledger.mark_default(active_loan.id, "operator request")

    view = ledger.get_loan_view(active_loan.id)
    assert view.loan.state == LoanState.ACTIVE
    assert EventType.INSTALLMENT_OVERDUE.value not in [
        e.event_type for e in ledger.list_events_for_reference(active_loan.id)
    ]


def test_severely_late_installment_justifies_default(ledger, active_loan, borrower, clock):
    clock.set_time(first_due(ledger, active_loan.id) + timedelta(seconds=3 * GRACE + 1))

    loan = ledger.mark_default(active_loan.id, "no contact for three days")

    assert loan.state == LoanState.DEFAULTED
    assert loan.closed_at == clock.now()
    # 50 - 3 overdue - 10 default
    assert ledger.get_user_view(borrower.id).user.score == 37

    default = decisions_of(ledger, loan.id, DecisionType.DEFAULT)
    assert len(default) == 1
    assert default[0].inputs["overdue_installments"] == 1
    assert default[0].inputs["severely_overdue"] is True
    assert default[0].inputs["operator_reason"] == "no contact for three days"
    assert default[0].inputs["threshold"] is None
    assert default[0].outputs == {"defaulted": True, "trigger": "operator", "schema": "default/v1"}
    ledger.verify_decision(default[0].id)

    change = ledger.list_events_for_reference(loan.id)[-1]
    assert change.event_type == EventType.LOAN_STATE_CHANGED.value
    assert change.detail["to_state"] == "DEFAULTED"
    assert change.detail["trigger"] == "operator"


def test_two_overdue_installments_justify_default(ledger, defaulted_loan):
    view = ledger.get_loan_view(defaulted_loan.id)

    assert view.loan.state == LoanState.DEFAULTED
    assert [i.status for i in view.installments] == [InstallmentStatus.OVERDUE, InstallmentStatus.OVERDUE]
    assert decisions_of(ledger, defaulted_loan.id, DecisionType.DEFAULT)[0].inputs["consecutive_overdue"] == 2


def test_default_requires_active_loan(ledger, borrower):
    funding = ledger.create_loan(borrower.id, 1_000_000, 2)

    with pytest.raises(Conflict):
        ledger.mark_default(funding.id, "operator request")


def test_defaulted_loan_cannot_default_again(ledger, defaulted_loan):
    with pytest.raises(Conflict):
        ledger.mark_default(defaulted_loan.id, "again")


@pytest.mark.parametrize("reason", ["", "x" * 501])
def test_default_reason_validated(ledger, active_loan, reason):
    with pytest.raises(ValidationError):
        ledger.mark_default(active_loan.id, reason)


def test_default_unknown_loan_not_found(ledger):
    with pytest.raises(NotFound):
        ledger.mark_default("missing", "operator request")


def test_liquidation_runs_waterfall_and_closes_loan(ledger, defaulted_loan, supporter):
    owed = ledger.get_loan_view(defaulted_loan.id).figures.amounts_owed

    result = ledger.liquidate_loan(defaulted_loan.id, borrower_collateral=100_000)

    assert result.total_loss == owed
    assert result.collateral_used == 100_000
    assert [(c.supporter_id, c.staked, c.cut, c.released) for c in result.cuts] == [
        (supporter.id, 500_000, 500_000, 0)
    ]
    assert result.fund_used == owed - 600_000
    assert result.shortfall == 0
    assert ledger.get_loan_view(defaulted_loan.id).loan.state == LoanState.LIQUIDATED

    waterfall = decisions_of(ledger, defaulted_loan.id, DecisionType.WATERFALL)
    assert len(waterfall) == 1
    assert waterfall[0].inputs["stakes_by_supporter"] == [[supporter.id, 500_000]]
    assert waterfall[0].outputs["total_recovered"] == owed
    assert waterfall[0].parameters_version == "v1.0.0"
    ledger.verify_decision(waterfall[0].id)

    events = ledger.list_events_for_reference(defaulted_loan.id)
    assert [e.event_type for e in events[-2:]] == [
        EventType.WATERFALL_EXECUTED.value,
        EventType.LOAN_STATE_CHANGED.value,
    ]
    assert events[-2].detail["cuts"] == [
        {"supporter_id": supporter.id, "staked": 500_000, "cut": 500_000, "released": 0}
    ]


def test_liquidation_happens_once(ledger, defaulted_loan):
    ledger.liquidate_loan(defaulted_loan.id)

    with pytest.raises(Conflict):
        ledger.liquidate_loan(defaulted_loan.id)
    assert len(decisions_of(ledger, defaulted_loan.id, DecisionType.WATERFALL)) == 1


def test_liquidation_requires_defaulted_loan(ledger, active_loan):
    with pytest.raises(Conflict):
        ledger.liquidate_loan(active_loan.id)


def test_negative_collateral_rejected(ledger, defaulted_loan):
    with pytest.raises(ValidationError):
        ledger.liquidate_loan(defaulted_loan.id, borrower_collateral=-1)


def test_preview_liquidation_writes_nothing(ledger, active_loan, supporter):
    owed = ledger.get_loan_view(active_loan.id).figures.amounts_owed
    events_before = len(ledger.list_events_for_reference(active_loan.id))

    preview = ledger.preview_liquidation(active_loan.id, expected_recovery=owed - 400_000)

    assert preview.total_loss == 400_000
    assert preview.collateral_used == 0
    assert [(c.supporter_id, c.cut, c.released) for c in preview.cuts] == [(supporter.id, 400_000, 100_000)]
    assert preview.fund_used == 0
    assert preview.recovery_rate == 1.0
    assert ledger.get_loan_view(active_loan.id).loan.state == LoanState.ACTIVE
    assert len(ledger.list_events_for_reference(active_loan.id)) == events_before
    assert decisions_of(ledger, active_loan.id, DecisionType.WATERFALL) == []

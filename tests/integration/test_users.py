"""Integration tests for registration, login and fraud review"""

import pytest

from trustlend.domain.exceptions import Conflict, NotFound, ValidationError
from trustlend.domain.models import (
    DecisionType,
    EventType,
    FraudType,
    Severity,
    UserRole,
    UserStatus,
)


def test_register_user(ledger, make_wallet):
    wallet = make_wallet()
    user = ledger.register_user("Alice", wallet, UserRole.BORROWER)

    assert user.wallet == wallet
    assert user.role == UserRole.BORROWER
    assert user.status == UserStatus.ACTIVE
    assert user.score == 50

    events = ledger.list_events_for_reference(user.id)
    assert [e.event_type for e in events] == [EventType.USER_REGISTERED.value]
    assert events[0].detail == {"role": "BORROWER", "score": 50, "wallet": wallet}


def test_wallet_is_stored_lowercase(ledger):
    user = ledger.register_user("Alice", "0x" + "AB" * 20, UserRole.SUPPORTER)

    assert user.wallet == "0x" + "ab" * 20


def test_duplicate_wallet_any_case_is_conflict(ledger, clock):
    """Test registering an existing wallet case-insensitively is a Conflict, not a second row"""
    first = ledger.register_user("Alice", "0x" + "ab" * 20, UserRole.BORROWER)
    clock.advance(3600)

    with pytest.raises(Conflict):
        ledger.register_user("Mallory", "0x" + "AB" * 20, UserRole.SUPPORTER)

    assert ledger.login_or_switch_role("0x" + "aB" * 20, UserRole.BORROWER).id == first.id


@pytest.mark.parametrize(
    "name,wallet",
    [
        ("", "0x" + "ab" * 20),
        ("Alice", "0x123"),
        ("Alice", "ab" * 21),
        ("Alice", "0x" + "zz" * 20),
    ],
)
def test_malformed_registration_is_validation_error(ledger, name, wallet):
    with pytest.raises(ValidationError):
        ledger.register_user(name, wallet, UserRole.BORROWER)


def test_unknown_role_is_validation_error(ledger, make_wallet):
    with pytest.raises(ValidationError):
        ledger.register_user("Alice", make_wallet(), "ADMIN")


def test_isolated_registration_logs_negative_fraud_decision(ledger, make_wallet):
    user = ledger.register_user("Alice", make_wallet(), UserRole.BORROWER)

    decisions = ledger.list_decisions_for_reference(user.id)
    assert [d.decision_type for d in decisions] == [DecisionType.FRAUD_MULTI_ACCOUNT]
    assert decisions[0].outputs["alert"] is False
    assert decisions[0].parameters_version == "v1.0.0"
    assert ledger.get_user_view(user.id).fraud_flags == []


def test_registration_burst_puts_user_under_review(ledger, clock, make_wallet):
    """Test six accounts two seconds apart: the last one is HIGH severity and goes under review"""
    users = []
    for _ in range(6):
        users.append(ledger.register_user("Batch", make_wallet(), UserRole.BORROWER))
        clock.advance(2)

    last = users[-1]
    assert last.status == UserStatus.UNDER_REVIEW
    assert last.score == 45  # 50 - 5 while under review

    view = ledger.get_user_view(last.id)
    assert view.user.status == UserStatus.UNDER_REVIEW
    assert view.user.score == 45
    assert len(view.fraud_flags) == 1
    flag = view.fraud_flags[0]
    assert flag.fraud_type == FraudType.MULTI_ACCOUNT
    assert flag.severity == Severity.HIGH
    assert flag.details["correlated_count"] == 5

    event_types = [e.event_type for e in ledger.list_events_for_reference(last.id)]
    assert event_types == [
        EventType.USER_REGISTERED.value,
        EventType.FRAUD_FLAG_RAISED.value,
        EventType.USER_STATUS_CHANGED.value,
        EventType.SCORE_RECALCULATED.value,
    ]


def test_small_burst_flags_without_review(ledger, clock, make_wallet):
    first = ledger.register_user("One", make_wallet(), UserRole.BORROWER)
    clock.advance(2)
    second = ledger.register_user("Two", make_wallet(), UserRole.BORROWER)

    assert second.status == UserStatus.ACTIVE
    flags = ledger.get_user_view(second.id).fraud_flags
    assert [f.severity for f in flags] == [Severity.LOW]
    assert flags[0].details["correlated_user_ids"] == [first.id]


def test_under_review_borrower_cannot_create_loan(ledger, clock, make_wallet):
    for _ in range(5):
        user = ledger.register_user("Batch", make_wallet(), UserRole.BORROWER)
        clock.advance(1)

    assert user.status == UserStatus.UNDER_REVIEW
    with pytest.raises(Conflict):
        ledger.create_loan(user.id, 100_000, 2)


def test_login_with_same_role_emits_nothing(ledger, borrower):
    user = ledger.login_or_switch_role(borrower.wallet, UserRole.BORROWER)

    assert user.role == UserRole.BORROWER
    assert [e.event_type for e in ledger.list_events_for_reference(borrower.id)] == [
        EventType.USER_REGISTERED.value
    ]


def test_role_switch_is_recorded(ledger, borrower):
    """Test switching role is an explicit, logged event rather than a silent overwrite"""
    user = ledger.login_or_switch_role(borrower.wallet.upper().replace("0X", "0x"), UserRole.SUPPORTER)

    assert user.role == UserRole.SUPPORTER
    assert ledger.get_user_view(borrower.id).user.role == UserRole.SUPPORTER

    events = ledger.list_events_for_reference(borrower.id)
    assert events[-1].event_type == EventType.ROLE_CHANGED.value
    assert events[-1].detail == {"new_role": "SUPPORTER", "previous_role": "BORROWER"}


def test_login_unknown_wallet_not_found(ledger, make_wallet):
    with pytest.raises(NotFound):
        ledger.login_or_switch_role(make_wallet(), UserRole.BORROWER)


def test_blocked_user_cannot_log_in(ledger, borrower, services):
    with services.ledger.uow.begin() as tx:
        tx.storage.users.set_status(borrower.id, UserStatus.BLOCKED)

    with pytest.raises(Conflict):
        ledger.login_or_switch_role(borrower.wallet, UserRole.BORROWER)


def test_user_view_unknown_user(ledger):
    with pytest.raises(NotFound):
        ledger.get_user_view("missing")

"""Integration tests for the event log, decision log and transaction rollback"""

import pytest
from sqlalchemy import update

from trustlend.domain.decisions import PricingInputs, PricingOutputs, ScoreAdjustmentOutputs
from trustlend.domain.exceptions import IntegrityViolation, NotFound, ValidationError
from trustlend.domain.models import DecisionType, EventType, UserRole
from trustlend.infrastructure.database.models import DecisionLogRow, EventRow
from trustlend.services.event_log import EventLog


def test_append_is_not_idempotent(services, clock):
    """Test identical appends create two distinct events"""
    with services.ledger.uow.begin() as tx:
        first = tx.events.append("ref-1", EventType.LOAN_CREATED, {"a": 1})
        second = tx.events.append("ref-1", EventType.LOAN_CREATED, {"a": 1})

    assert first.id != second.id
    assert first.integrity_hash == second.integrity_hash  # same content, same timestamp
    assert len(services.ledger.list_events_for_reference("ref-1")) == 2


def test_events_listed_in_append_order(services, clock):
    """Test same-timestamp events keep insertion order, later timestamps come after"""
    with services.ledger.uow.begin() as tx:
        for n in range(5):
            tx.events.append("ref-1", "CUSTOM", {"n": n})
        tx.events.append("ref-2", "CUSTOM", {"n": 99})

    clock.advance(1)
    with services.ledger.uow.begin() as tx:
        tx.events.append("ref-1", "CUSTOM", {"n": 5})

    events = services.ledger.list_events_for_reference("ref-1")
    assert [e.detail["n"] for e in events] == [0, 1, 2, 3, 4, 5]
    assert [e.sequence for e in events] == sorted(e.sequence for e in events)


def test_event_hash_verifies(services):
    with services.ledger.uow.begin() as tx:
        event = tx.events.append("ref-1", EventType.LOAN_CREATED, {"principal": 1_000_000})

    assert services.ledger.verify_event(event.id).integrity_hash == event.integrity_hash


def test_tampered_event_is_integrity_violation(services, session_factory):
    with services.ledger.uow.begin() as tx:
        event = tx.events.append("ref-1", EventType.LOAN_CREATED, {"principal": 1_000_000})

    with session_factory() as session:
        session.execute(update(EventRow).where(EventRow.id == event.id).values(detail={"principal": 9_000_000}))
        session.commit()

    with pytest.raises(IntegrityViolation):
        services.ledger.verify_event(event.id)


def test_verify_unknown_event_not_found(ledger):
    with pytest.raises(NotFound):
        ledger.verify_event("missing")


def test_decision_round_trip_verifies(ledger, borrower):
    """Test the hash recomputed from a stored entry's own fields equals the persisted hash"""
    loan = ledger.create_loan(borrower.id, 1_000_000, 4)
    entry = ledger.list_decisions_for_reference(loan.id)[0]

    verified = ledger.verify_decision(entry.id)

    assert verified.integrity_hash == entry.integrity_hash
    assert verified.inputs["schema"] == "pricing/v1"
    assert verified.parameters_version == "v1.0.0"


def test_tampered_decision_is_integrity_violation(ledger, borrower, session_factory):
    loan = ledger.create_loan(borrower.id, 1_000_000, 4)
    entry = ledger.list_decisions_for_reference(loan.id)[0]

    tampered = dict(entry.outputs, rate_bps=1)
    with session_factory() as session:
        session.execute(update(DecisionLogRow).where(DecisionLogRow.id == entry.id).values(outputs=tampered))
        session.commit()

    with pytest.raises(IntegrityViolation):
        ledger.verify_decision(entry.id)


def test_decision_version_change_is_integrity_violation(ledger, borrower, session_factory):
    loan = ledger.create_loan(borrower.id, 1_000_000, 4)
    entry = ledger.list_decisions_for_reference(loan.id)[0]

    with session_factory() as session:
        session.execute(
            update(DecisionLogRow).where(DecisionLogRow.id == entry.id).values(parameters_version="v9.9.9")
        )
        session.commit()

    with pytest.raises(IntegrityViolation):
        ledger.verify_decision(entry.id)


def test_decision_payload_type_must_match(services):
    inputs = PricingInputs(borrower_id="b-1", score=50, principal=1, installment_count=1)

    with pytest.raises(ValidationError):
        with services.ledger.uow.begin() as tx:
            tx.decisions.record(DecisionType.PRICING, inputs, ScoreAdjustmentOutputs(new_score=1), "v1.0.0")


def test_recorded_decision_stores_normalized_payloads(services):
    with services.ledger.uow.begin() as tx:
        entry = tx.decisions.record(
            DecisionType.PRICING,
            PricingInputs(borrower_id="b-1", score=50, principal=1_000, installment_count=2),
            PricingOutputs(tier_name="MEDIUM", rate_bps=1800, max_principal=5, min_coverage_pct=50, required_stake=500),
            "v1.0.0",
            reference_id="loan-x",
        )

    stored = services.ledger.list_decisions_for_reference("loan-x")[0]
    assert stored.inputs == entry.inputs
    assert list(stored.inputs) == sorted(stored.inputs)
    assert services.ledger.verify_decision(entry.id).id == entry.id


def test_failed_event_append_rolls_back_user(ledger, make_wallet, monkeypatch):
    """Test no primary entity is written without its event"""
    wallet = make_wallet()

    def fail(*args, **kwargs):
        raise RuntimeError("event store down")

    monkeypatch.setattr(EventLog, "append", fail)
    with pytest.raises(RuntimeError):
        ledger.register_user("Alice", wallet, UserRole.BORROWER)
    monkeypatch.undo()

    with pytest.raises(NotFound):
        ledger.login_or_switch_role(wallet, UserRole.BORROWER)


def test_failed_activation_rolls_back_endorsement(ledger, borrower, supporter, monkeypatch):
    loan = ledger.create_loan(borrower.id, 1_000_000, 4)

    def fail(*args, **kwargs):
        raise RuntimeError("schedule write failed")

    monkeypatch.setattr("trustlend.services.ledger.generate_installment_plan", fail)
    with pytest.raises(RuntimeError):
        ledger.add_endorsement(loan.id, supporter.id, 500_000)
    monkeypatch.undo()

    view = ledger.get_loan_view(loan.id)
    assert view.endorsements == []
    assert [e.event_type for e in ledger.list_events_for_reference(loan.id)] == [
        EventType.LOAN_CREATED.value,
        EventType.LOAN_STATE_CHANGED.value,
    ]

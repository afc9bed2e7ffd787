"""Unit tests for decision payload schemas and version bumping"""

import pytest

from trustlend.domain.decisions import (
    DefaultInputs,
    MultiAccountOutputs,
    PricingInputs,
    PricingOutputs,
    WaterfallOutputs,
)
from trustlend.domain.models import DecisionType
from trustlend.services.parameters import next_version


def test_payload_serializes_with_schema_tag():
    payload = PricingInputs(borrower_id="b-1", score=75, principal=1_000_000, installment_count=4)

    assert payload.to_dict() == {
        "borrower_id": "b-1",
        "score": 75,
        "principal": 1_000_000,
        "installment_count": 4,
        "schema": "pricing/v1",
    }


def test_schema_names_follow_decision_type():
    assert PricingOutputs.schema() == "pricing/v1"
    assert MultiAccountOutputs.schema() == "fraud_multi_account/v1"
    assert DefaultInputs.schema() == "default/v1"


def test_waterfall_outputs_serialize_cuts_as_pairs():
    payload = WaterfallOutputs(
        collateral_used=100, cuts_by_supporter=(("s-1", 300),), fund_used=0, total_recovered=400, shortfall=0
    )

    assert WaterfallOutputs.decision_type == DecisionType.WATERFALL
    assert payload.to_dict()["schema"] == "waterfall/v1"
    assert payload.to_dict()["cuts_by_supporter"] == (("s-1", 300),)


def test_payload_carries_its_decision_type():
    assert PricingInputs.decision_type == DecisionType.PRICING
    assert DefaultInputs.decision_type == DecisionType.DEFAULT


def test_payloads_are_immutable():
    payload = DefaultInputs(loan_id="l-1", consecutive_overdue=2, threshold=3)

    with pytest.raises(AttributeError):
        payload.threshold = 1


@pytest.mark.parametrize(
    "current,expected",
    [
        ("v1.0.0", "v1.0.1"),
        ("v1.2.9", "v1.2.10"),
        ("v10.4.99", "v10.4.100"),
        ("1.0.0", "v1.0.0"),
        ("", "v1.0.0"),
        ("latest", "v1.0.0"),
    ],
)
def test_next_version(current, expected):
    assert next_version(current) == expected

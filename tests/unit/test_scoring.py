"""Unit tests for score adjustment rules"""

import pytest

from trustlend.domain.scoring import ScoreChange, adjust_score


def test_on_time_payments_add_two_each():
    assert adjust_score(50, ScoreChange(on_time_payments=3)) == 56


def test_overdue_installments_cost_three_each():
    assert adjust_score(50, ScoreChange(overdue_installments=2)) == 44


def test_default_costs_ten():
    assert adjust_score(50, ScoreChange(defaulted=True)) == 40


def test_under_review_costs_five():
    assert adjust_score(50, ScoreChange(under_review=True)) == 45


def test_combined_change():
    change = ScoreChange(on_time_payments=1, overdue_installments=1, defaulted=True, under_review=True)

    # 50 + 2 - 3 - 10 - 5
    assert adjust_score(50, change) == 34


@pytest.mark.parametrize(
    "current,change,expected",
    [
        (99, ScoreChange(on_time_payments=5), 100),
        (5, ScoreChange(defaulted=True), 0),
        (0, ScoreChange(overdue_installments=10), 0),
    ],
)
def test_score_is_clamped(current, change, expected):
    assert adjust_score(current, change) == expected


def test_empty_change():
    assert ScoreChange().is_empty
    assert not ScoreChange(under_review=True).is_empty
    assert adjust_score(73, ScoreChange()) == 73

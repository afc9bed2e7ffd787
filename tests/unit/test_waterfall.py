"""Unit tests for the loss waterfall"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from trustlend.domain.exceptions import ValidationError
from trustlend.domain.waterfall import execute_waterfall, simulate_waterfall

FUND = 1_000_000_000


def test_collateral_absorbs_loss_first():
    result = execute_waterfall(100, 150, [("a", 50)], FUND)

    assert result.collateral_used == 100
    assert [(c.cut, c.released) for c in result.cuts] == [(0, 50)]
    assert result.fund_used == 0
    assert result.shortfall == 0


def test_stakes_cut_pro_rata_after_collateral():
    result = execute_waterfall(400, 100, [("a", 600), ("b", 300)], FUND)

    assert result.collateral_used == 100
    assert [(c.supporter_id, c.cut, c.released) for c in result.cuts] == [("a", 200, 400), ("b", 100, 200)]
    assert result.fund_used == 0
    assert result.total_recovered == 400


def test_rounding_remainder_falls_to_mutual_fund():
    """Test 500 over stakes of 600 and 300 cuts 333 and 166, leaving 1 for the fund"""
    result = execute_waterfall(500, 0, [("a", 600), ("b", 300)], FUND)

    assert [c.cut for c in result.cuts] == [333, 166]
    assert result.fund_used == 1
    assert result.shortfall == 0


def test_cut_never_exceeds_stake_and_fund_is_capped():
    result = execute_waterfall(2_000, 200, [("a", 600), ("b", 300)], 500)

    assert [(c.cut, c.released) for c in result.cuts] == [(600, 0), (300, 0)]
    assert result.fund_used == 500
    assert result.total_recovered == 1_600
    assert result.shortfall == 400
    assert result.recovery_rate == 0.8


def test_no_loss_releases_every_stake():
    result = execute_waterfall(0, 0, [("a", 600), ("b", 300)], FUND)

    assert [c.released for c in result.cuts] == [600, 300]
    assert result.total_recovered == 0
    assert result.recovery_rate == 1.0


def test_loss_without_stakes_goes_to_fund():
    result = execute_waterfall(700, 200, [], FUND)

    assert result.cuts == ()
    assert result.fund_used == 500


@pytest.mark.parametrize(
    "loss,collateral,stakes,fund",
    [(-1, 0, [], FUND), (10, -1, [], FUND), (10, 0, [("a", -5)], FUND), (10, 0, [], -1)],
)
def test_negative_amounts_rejected(loss, collateral, stakes, fund):
    with pytest.raises(ValidationError):
        execute_waterfall(loss, collateral, stakes, fund)


def test_simulation_deducts_expected_recovery():
    result = simulate_waterfall(1_000, 400, 0, [("a", 1_000)], FUND)

    assert result.total_loss == 600
    assert result.cuts[0].cut == 600


def test_simulation_with_full_recovery_has_no_loss():
    result = simulate_waterfall(1_000, 1_500, 0, [("a", 1_000)], FUND)

    assert result.total_loss == 0
    assert result.cuts[0].released == 1_000


@given(
    loss=st.integers(min_value=0, max_value=10_000_000),
    collateral=st.integers(min_value=0, max_value=5_000_000),
    stakes=st.lists(st.integers(min_value=0, max_value=5_000_000), max_size=6),
    fund=st.integers(min_value=0, max_value=5_000_000),
)
def test_waterfall_accounts_for_every_unit(loss, collateral, stakes, fund):
    result = execute_waterfall(loss, collateral, [(f"s{n}", s) for n, s in enumerate(stakes)], fund)

    assert all(0 <= c.cut <= c.staked for c in result.cuts)
    assert result.collateral_used <= collateral
    assert result.fund_used <= fund
    assert result.shortfall >= 0
    assert result.collateral_used + result.stakes_cut + result.fund_used + result.shortfall == loss

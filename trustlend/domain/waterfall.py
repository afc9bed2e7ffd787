"""
Loss waterfall for defaulted loans.

A loss is absorbed in order:
1. Borrower collateral
2. Supporter stakes, pro rata to stake size, never more than a stake
3. The mutual fund

Whatever remains is the shortfall. Amounts are integer micro-units; pro-rata
cuts round down and the remainder falls through to the mutual fund.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

from trustlend.domain.exceptions import ValidationError


@dataclass(frozen=True)
class StakeCut:
    supporter_id: str
    staked: int
    cut: int

    @property
    def released(self) -> int:
        return self.staked - self.cut


@dataclass(frozen=True)
class WaterfallResult:
    total_loss: int
    collateral_used: int
    cuts: Tuple[StakeCut, ...]
    fund_used: int

    @property
    def stakes_cut(self) -> int:
        return sum(c.cut for c in self.cuts)

    @property
    def total_recovered(self) -> int:
        return self.collateral_used + self.stakes_cut + self.fund_used

    @property
    def shortfall(self) -> int:
        return self.total_loss - self.total_recovered

    @property
    def recovery_rate(self) -> float:
        """Share of the loss recovered; 1.0 when there was nothing to recover"""
        if self.total_loss == 0:
            return 1.0
        return self.total_recovered / self.total_loss


def execute_waterfall(
    total_loss: int,
    borrower_collateral: int,
    stakes: Sequence[Tuple[str, int]],
    mutual_fund_available: int,
) -> WaterfallResult:
    """
    Distribute `total_loss` over collateral, (supporter_id, stake) pairs and
    the mutual fund. Stakes are cut in the order given.
    """
    if total_loss < 0 or borrower_collateral < 0 or mutual_fund_available < 0:
        raise ValidationError("waterfall amounts must be non-negative")
    if any(staked < 0 for _, staked in stakes):
        raise ValidationError("stakes must be non-negative")

    remaining = total_loss
    collateral_used = min(remaining, borrower_collateral)
    remaining -= collateral_used

    pool = sum(staked for _, staked in stakes)
    cuts = []
    for supporter_id, staked in stakes:
        cut = min(staked, staked * remaining // pool) if remaining and pool else 0
        cuts.append(StakeCut(supporter_id=supporter_id, staked=staked, cut=cut))
    remaining -= sum(c.cut for c in cuts)

    fund_used = min(remaining, mutual_fund_available)
    return WaterfallResult(
        total_loss=total_loss,
        collateral_used=collateral_used,
        cuts=tuple(cuts),
        fund_used=fund_used,
    )


def simulate_waterfall(
    outstanding_balance: int,
    expected_recovery: int,
    borrower_collateral: int,
    stakes: Sequence[Tuple[str, int]],
    mutual_fund_available: int,
) -> WaterfallResult:
    """Preview a liquidation where `expected_recovery` is collected before the waterfall runs"""
    total_loss = max(0, outstanding_balance - expected_recovery)
    return execute_waterfall(total_loss, borrower_collateral, stakes, mutual_fund_available)

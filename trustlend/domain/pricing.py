"""Pricing engine - score to tier lookup against versioned parameter tables"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

from trustlend.domain.exceptions import IntegrityViolation, NoMatchingTier, NotFound, ValidationError
from trustlend.domain.models import PricingTier, SystemParameters

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100
MAX_RATE_BPS = 10_000

# Baseline table seeded for the first parameter version.
# Limits are in micro-units (1 unit = 1_000_000).
DEFAULT_PRICING_TIERS: tuple = (
    PricingTier("LOW", 0, 39, rate_bps=2200, max_principal=2_000_000, min_coverage_pct=100),
    PricingTier("MEDIUM", 40, 69, rate_bps=1800, max_principal=5_000_000, min_coverage_pct=50),
    PricingTier("HIGH", 70, 89, rate_bps=1400, max_principal=8_000_000, min_coverage_pct=25),
    PricingTier("EXCELLENT", 90, 100, rate_bps=900, max_principal=10_000_000, min_coverage_pct=0),
)


@dataclass(frozen=True)
class PricingQuote:
    """Tier chosen for a borrower plus the stake needed to activate the loan"""

    tier: PricingTier
    parameters_version: str
    score: int
    principal: int
    required_stake: int


def pricing_table_errors(tiers: Sequence[PricingTier]) -> List[str]:
    """
    Check the table invariant and return every violation found.

    Requirements:
    - at least one tier, each with score_min <= score_max
    - sorted by lower bound, tiers are contiguous with no gaps or overlaps
    - the union covers exactly [0, 100]
    - rate within 0..10000 bps, max principal positive, coverage within 0..100
    """
    if not tiers:
        return ["pricing table has no tiers"]

    errors = []
    for tier in tiers:
        if tier.score_min > tier.score_max:
            errors.append(f"tier {tier.name}: score_min {tier.score_min} > score_max {tier.score_max}")
        if not 0 <= tier.rate_bps <= MAX_RATE_BPS:
            errors.append(f"tier {tier.name}: rate {tier.rate_bps} bps outside 0..{MAX_RATE_BPS}")
        if tier.max_principal <= 0:
            errors.append(f"tier {tier.name}: max principal must be positive")
        if not 0 <= tier.min_coverage_pct <= 100:
            errors.append(f"tier {tier.name}: coverage {tier.min_coverage_pct}% outside 0..100")

    ordered = sorted(tiers, key=lambda t: t.score_min)
    if ordered[0].score_min != SCORE_MIN:
        errors.append(f"first tier must start at score {SCORE_MIN}")
    if ordered[-1].score_max != SCORE_MAX:
        errors.append(f"last tier must end at score {SCORE_MAX}")
    for current, following in zip(ordered, ordered[1:]):
        if current.score_max + 1 != following.score_min:
            errors.append(f"gap or overlap between tiers {current.name} and {following.name}")

    return errors


def select_tier(score: int, tiers: Sequence[PricingTier], version: str = "unversioned") -> PricingTier:
    """
    Return the tier whose inclusive range contains the score.

    Ranges never overlap in a validated table. If validation was skipped and
    they do, the first tier in table order wins.
    """
    for tier in tiers:
        if tier.contains(score):
            return tier
    raise NoMatchingTier(score, version)


def _check_score(score) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError(f"score must be an integer, got {score!r}")
    if not SCORE_MIN <= score <= SCORE_MAX:
        raise ValidationError(f"score must be between {SCORE_MIN} and {SCORE_MAX}, got {score}")
    return score


class PricingEngine:
    """
    Versioned tier lookup.

    Holds the only long-lived state in the core: a cache of validated,
    immutable parameter versions. Selection is pure and re-executable for any
    version ever loaded.
    """

    def __init__(self):
        self._versions: Dict[str, SystemParameters] = {}

    def load(self, parameters: SystemParameters) -> SystemParameters:
        """Validate and cache a stored parameter version"""
        cached = self._versions.get(parameters.version)
        if cached is not None:
            if tuple(cached.tiers) != tuple(parameters.tiers):
                raise IntegrityViolation(f"parameters {parameters.version} changed after publication")
            return parameters

        errors = pricing_table_errors(parameters.tiers)
        if errors:
            logger.error(
                "Invalid pricing table",
                extra={"parameters_version": parameters.version, "errors": errors},
            )
            raise IntegrityViolation(f"pricing table {parameters.version} is invalid: {'; '.join(errors)}")

        self._versions[parameters.version] = parameters
        return parameters

    def is_loaded(self, version: str) -> bool:
        return version in self._versions

    def parameters(self, version: str) -> SystemParameters:
        try:
            return self._versions[version]
        except KeyError:
            raise NotFound("SystemParameters", version) from None

    def select_tier(self, score: int, version: str) -> PricingTier:
        return select_tier(_check_score(score), self.parameters(version).tiers, version)

    def quote(self, score: int, principal: int, version: str) -> PricingQuote:
        """Select the tier and enforce its credit limit"""
        tier = self.select_tier(score, version)
        if principal > tier.max_principal:
            raise ValidationError(
                f"principal {principal} exceeds the {tier.name} tier limit of {tier.max_principal}"
            )
        return PricingQuote(
            tier=tier,
            parameters_version=version,
            score=score,
            principal=principal,
            required_stake=required_stake(principal, tier.min_coverage_pct),
        )


def required_stake(principal: int, min_coverage_pct: int) -> int:
    """Smallest total stake meeting the coverage requirement (rounded up)"""
    return -(-principal * min_coverage_pct // 100)

"""Risk classification for scan opportunities.

Pure computation: no I/O, no shared state. Each metric is bucketed into a
1-5 factor (thin market cap, liquidity or holder base scores higher), and the
rounded mean of the three factors picks the tier.
"""

from dataclasses import dataclass

import numpy as np

from tradebot.engine.opportunity import Opportunity
from tradebot.schemas.engine_config import EngineConfig
from tradebot.utils.constants import (
    HOLDERS_BOUNDS,
    LIQUIDITY_BOUNDS,
    MARKET_CAP_BOUNDS,
    RiskTier,
)


@dataclass(frozen=True)
class RiskAssessment:
    tier: RiskTier
    score: int
    market_cap_factor: int
    liquidity_factor: int
    holders_factor: int


@dataclass
class AdmissionCheck:
    should_admit: bool
    skip_reason: str | None = None  # "below_threshold", "below_tier_min_profit", "risk_above_tier_max"


def _factor(value: float, bounds: list[float]) -> int:
    """5 below the first bound, 1 at or above the last."""
    return 5 - int(np.digitize(value, bounds))


def classify(opportunity: Opportunity) -> RiskAssessment:
    market_cap_factor = _factor(opportunity.market_cap_usd, MARKET_CAP_BOUNDS)
    liquidity_factor = _factor(opportunity.liquidity_usd, LIQUIDITY_BOUNDS)
    holders_factor = _factor(opportunity.holders_count, HOLDERS_BOUNDS)

    # The mean of three integers never lands on .5, so rounding mode is irrelevant
    score = int(round(np.mean([market_cap_factor, liquidity_factor, holders_factor])))

    return RiskAssessment(
        tier=RiskTier.from_level(score),
        score=score,
        market_cap_factor=market_cap_factor,
        liquidity_factor=liquidity_factor,
        holders_factor=holders_factor,
    )


def evaluate_admission(
    opportunity: Opportunity,
    assessment: RiskAssessment,
    config: EngineConfig,
) -> AdmissionCheck:
    """Profit and risk gates for one classified opportunity."""
    level = config.risk_levels[assessment.tier]
    profit = opportunity.estimated_profit_usd

    if profit < config.profit_threshold_usd:
        return AdmissionCheck(False, "below_threshold")
    if profit < level.min_profit_usd:
        return AdmissionCheck(False, "below_tier_min_profit")
    if assessment.score > level.max_risk:
        return AdmissionCheck(False, "risk_above_tier_max")
    return AdmissionCheck(True)

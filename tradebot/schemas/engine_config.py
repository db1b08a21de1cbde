"""Pydantic schemas for the engine configuration."""

from pydantic import BaseModel, Field, field_validator

from tradebot.utils.constants import DEFAULT_RISK_LEVELS, RISK_TIER_ORDER, RiskTier


class RiskLevel(BaseModel):
    max_risk: float = Field(gt=0)
    min_profit_usd: float = Field(ge=0)

    model_config = {"frozen": True}


def _normalize_tier_keys(value):
    if isinstance(value, dict):
        return {k.strip().lower() if isinstance(k, str) else k: v for k, v in value.items()}
    return value


def default_risk_levels() -> dict[RiskTier, RiskLevel]:
    return {
        tier: RiskLevel(max_risk=max_risk, min_profit_usd=min_profit)
        for tier, (max_risk, min_profit) in DEFAULT_RISK_LEVELS.items()
    }


class EngineConfig(BaseModel):
    # Admission
    profit_threshold_usd: float = Field(default=3.0, ge=0)
    max_concurrent_trades: int = Field(default=8, ge=1)
    amount_in_native: float = Field(default=0.01, gt=0)
    risk_levels: dict[RiskTier, RiskLevel] = Field(default_factory=default_risk_levels)

    # Scheduling
    trade_interval_sec: float = Field(default=60.0, gt=0)
    monitor_interval_sec: float = Field(default=15.0, gt=0)
    scan_concurrency: int = Field(default=3, ge=1)
    max_tokens_per_scan: int = Field(default=20, ge=1)

    # Exit policy (percent units)
    take_profit_pct: float = Field(default=12.0, gt=0)
    stop_loss_pct: float = Field(default=-8.0, lt=0)
    max_holding_sec: float = Field(default=3600.0, gt=0)

    # External call timeouts
    discovery_timeout_sec: float = Field(default=10.0, gt=0)
    quote_timeout_sec: float = Field(default=10.0, gt=0)
    submit_timeout_sec: float = Field(default=15.0, gt=0)
    confirm_timeout_sec: float = Field(default=60.0, gt=0)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("risk_levels", mode="before")
    @classmethod
    def _tier_keys_any_case(cls, value):
        return _normalize_tier_keys(value)

    @field_validator("risk_levels")
    @classmethod
    def _validate_risk_levels(cls, value: dict[RiskTier, RiskLevel]) -> dict[RiskTier, RiskLevel]:
        missing = [t.value for t in RISK_TIER_ORDER if t not in value]
        if missing:
            raise ValueError(f"missing tiers: {', '.join(missing)}")
        previous = 0.0
        for tier in RISK_TIER_ORDER:
            if value[tier].max_risk <= previous:
                raise ValueError(f"max_risk must increase with tier order (at {tier.value})")
            previous = value[tier].max_risk
        return value


class EngineConfigUpdate(BaseModel):
    """Partial update. Constraints are checked on the merged EngineConfig."""

    profit_threshold_usd: float | None = None
    max_concurrent_trades: int | None = None
    amount_in_native: float | None = None
    risk_levels: dict[RiskTier, RiskLevel] | None = None
    trade_interval_sec: float | None = None
    monitor_interval_sec: float | None = None
    scan_concurrency: int | None = None
    max_tokens_per_scan: int | None = None
    take_profit_pct: float | None = None
    stop_loss_pct: float | None = None
    max_holding_sec: float | None = None
    discovery_timeout_sec: float | None = None
    quote_timeout_sec: float | None = None
    submit_timeout_sec: float | None = None
    confirm_timeout_sec: float | None = None

    model_config = {"extra": "forbid"}

    @field_validator("risk_levels", mode="before")
    @classmethod
    def _tier_keys_any_case(cls, value):
        return _normalize_tier_keys(value)

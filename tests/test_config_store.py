"""Tests for EngineConfig validation and the ConfigStore update/load paths."""

import httpx
import pytest
import respx

from tradebot.engine.config_store import ConfigStore, ConfigValidationError
from tradebot.schemas.engine_config import EngineConfig, EngineConfigUpdate
from tradebot.utils.constants import RiskTier

CONFIG_URL = "https://config.test/project"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def test_defaults():
    config = EngineConfig()
    assert config.profit_threshold_usd == 3.0
    assert config.trade_interval_sec == 60.0
    assert config.max_concurrent_trades == 8
    assert config.take_profit_pct == 12.0
    assert config.stop_loss_pct == -8.0
    assert config.risk_levels[RiskTier.COLD].max_risk == 1
    assert config.risk_levels[RiskTier.NOVA].min_profit_usd == 15


def test_risk_levels_must_cover_every_tier():
    levels = EngineConfig().model_dump()["risk_levels"]
    del levels[RiskTier.HOT]
    with pytest.raises(ValueError, match="missing tiers: hot"):
        EngineConfig(risk_levels=levels)


# ---------------------------------------------------------------------------
# update()
# ---------------------------------------------------------------------------

class TestUpdate:
    def test_partial_update_merges(self):
        store = ConfigStore()
        config = store.update({"profit_threshold_usd": 5, "max_concurrent_trades": 3})
        assert config.profit_threshold_usd == 5
        assert config.max_concurrent_trades == 3
        assert config.trade_interval_sec == 60.0
        assert store.get() is config

    def test_accepts_update_model(self):
        store = ConfigStore()
        store.update(EngineConfigUpdate(trade_interval_sec=30))
        assert store.get().trade_interval_sec == 30

    def test_negative_interval_rejected_and_config_unchanged(self):
        store = ConfigStore()
        before = store.get()
        with pytest.raises(ConfigValidationError) as exc_info:
            store.update({"trade_interval_sec": -5})
        assert exc_info.value.field == "trade_interval_sec"
        assert store.get() is before

    def test_invalid_field_among_valid_ones_rejects_whole_update(self):
        store = ConfigStore()
        with pytest.raises(ConfigValidationError) as exc_info:
            store.update({"profit_threshold_usd": 10, "stop_loss_pct": 5})
        assert exc_info.value.field == "stop_loss_pct"
        assert store.get().profit_threshold_usd == 3.0

    def test_null_rejected(self):
        store = ConfigStore()
        with pytest.raises(ConfigValidationError) as exc_info:
            store.update({"max_concurrent_trades": None})
        assert exc_info.value.field == "max_concurrent_trades"

    def test_unknown_field_rejected(self):
        store = ConfigStore()
        with pytest.raises(ConfigValidationError) as exc_info:
            store.update({"leverage": 10})
        assert exc_info.value.field == "leverage"

    def test_wrong_type_rejected(self):
        store = ConfigStore()
        with pytest.raises(ConfigValidationError) as exc_info:
            store.update({"max_concurrent_trades": "many"})
        assert exc_info.value.field == "max_concurrent_trades"

    def test_single_tier_update_keeps_other_tiers(self):
        store = ConfigStore()
        config = store.update({"risk_levels": {"hot": {"max_risk": 3.5, "min_profit_usd": 6}}})
        assert config.risk_levels[RiskTier.HOT].max_risk == 3.5
        assert config.risk_levels[RiskTier.HOT].min_profit_usd == 6
        assert config.risk_levels[RiskTier.NOVA].max_risk == 5

    def test_tier_names_in_any_case(self):
        store = ConfigStore()
        config = store.update({
            "risk_levels": {
                "Warm": {"max_risk": 2, "min_profit_usd": 4},
                " HOT ": {"max_risk": 3.5, "min_profit_usd": 6},
            }
        })
        assert config.risk_levels[RiskTier.WARM].min_profit_usd == 4
        assert config.risk_levels[RiskTier.HOT].max_risk == 3.5
        assert set(config.risk_levels) == set(RiskTier)

    def test_non_monotonic_tiers_rejected(self):
        store = ConfigStore()
        before = store.get()
        with pytest.raises(ConfigValidationError) as exc_info:
            store.update({"risk_levels": {"warm": {"max_risk": 0.5, "min_profit_usd": 2}}})
        assert exc_info.value.field == "risk_levels"
        assert store.get() is before


# ---------------------------------------------------------------------------
# load()
# ---------------------------------------------------------------------------

class TestLoad:
    @pytest.mark.asyncio
    async def test_no_url_keeps_defaults(self):
        store = ConfigStore()
        config = await store.load("")
        assert config == EngineConfig()

    @pytest.mark.asyncio
    @respx.mock
    async def test_loads_camel_case_payload(self):
        respx.get(CONFIG_URL).mock(return_value=httpx.Response(200, json={
            "profitThresholdUSD": 5,
            "tradeIntervalSec": 30,
            "maxConcurrentTrades": 4,
            "riskLevels": {"Nova": {"maxRisk": 5, "minProfit": 25}},
            "projectName": "ignored",
        }))
        store = ConfigStore()
        config = await store.load(CONFIG_URL)
        assert config.profit_threshold_usd == 5
        assert config.trade_interval_sec == 30
        assert config.max_concurrent_trades == 4
        assert config.risk_levels[RiskTier.NOVA].min_profit_usd == 25
        assert config.risk_levels[RiskTier.COLD].min_profit_usd == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_falls_back_to_defaults(self):
        respx.get(CONFIG_URL).mock(return_value=httpx.Response(500))
        store = ConfigStore()
        config = await store.load(CONFIG_URL)
        assert config == EngineConfig()

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_remote_values_fall_back_to_defaults(self):
        respx.get(CONFIG_URL).mock(return_value=httpx.Response(200, json={"tradeIntervalSec": -1}))
        store = ConfigStore()
        config = await store.load(CONFIG_URL)
        assert config.trade_interval_sec == 60.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_payload_falls_back(self):
        respx.get(CONFIG_URL).mock(return_value=httpx.Response(200, json=[1, 2, 3]))
        store = ConfigStore()
        config = await store.load(CONFIG_URL)
        assert config == EngineConfig()

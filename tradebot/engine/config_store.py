"""Engine configuration store.

Holds the current EngineConfig snapshot. Updates are validated against the
full merged config before the snapshot is swapped, so readers never observe a
partially applied update.
"""

import logging
import threading
from typing import Any

import httpx
from pydantic import ValidationError

from tradebot.schemas.engine_config import EngineConfig, EngineConfigUpdate

logger = logging.getLogger(__name__)

# Remote keys (camelCase, as served by the config endpoint) -> EngineConfig fields
_REMOTE_KEYS = {
    "profitThresholdUSD": "profit_threshold_usd",
    "tradeIntervalSec": "trade_interval_sec",
    "maxConcurrentTrades": "max_concurrent_trades",
    "riskLevels": "risk_levels",
}


class ConfigValidationError(ValueError):
    """A config update was rejected. `field` names the first invalid field."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


def _first_error(exc: ValidationError) -> ConfigValidationError:
    err = exc.errors()[0]
    loc = err.get("loc") or ("config",)
    return ConfigValidationError(str(loc[0]), err.get("msg", "invalid value"))


def _remote_risk_levels(raw: dict) -> dict:
    levels = {}
    for tier, level in raw.items():
        if isinstance(level, dict):
            level = {
                "max_risk": level.get("maxRisk", level.get("max_risk")),
                "min_profit_usd": level.get("minProfit", level.get("min_profit_usd")),
            }
        levels[str(tier).lower()] = level
    return levels


class ConfigStore:
    def __init__(self, config: EngineConfig | None = None):
        self._config = config or EngineConfig()
        self._lock = threading.Lock()

    def get(self) -> EngineConfig:
        return self._config

    def update(self, partial: dict[str, Any] | EngineConfigUpdate) -> EngineConfig:
        """Merge `partial` over the current config and swap atomically.

        Raises ConfigValidationError and leaves the store untouched when any
        field is invalid.
        """
        if isinstance(partial, EngineConfigUpdate):
            update = partial
        else:
            try:
                update = EngineConfigUpdate.model_validate(partial)
            except ValidationError as e:
                raise _first_error(e) from e

        changes = update.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if value is None:
                raise ConfigValidationError(key, "must not be null")

        with self._lock:
            current = self._config
            merged = current.model_dump()
            if "risk_levels" in changes:
                # Tiers merge individually so one tier can be retuned on its own
                merged["risk_levels"] = {**merged["risk_levels"], **changes.pop("risk_levels")}
            merged.update(changes)
            try:
                new_config = EngineConfig.model_validate(merged)
            except ValidationError as e:
                raise _first_error(e) from e
            self._config = new_config

        logger.info(f"Engine config updated: {sorted(update.model_fields_set)}")
        return new_config

    async def load(self, source_url: str, timeout: float = 10.0) -> EngineConfig:
        """Load config from a remote endpoint, keeping defaults on any failure."""
        if not source_url:
            logger.info("No engine config source configured, using defaults")
            return self._config

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.get(source_url, headers={"Accept": "application/json"})
                resp.raise_for_status()
                data = resp.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")

            partial = {}
            for key, value in data.items():
                field = _REMOTE_KEYS.get(key, key)
                if field == "risk_levels" and isinstance(value, dict):
                    value = _remote_risk_levels(value)
                if field in EngineConfigUpdate.model_fields and value is not None:
                    partial[field] = value
            config = self.update(partial)
            logger.info(f"Engine config loaded from {source_url}")
            return config
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Engine config load failed, using defaults: {e}")
            return self._config

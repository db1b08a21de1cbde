"""Scan-time value types. Never persisted."""

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TokenListing:
    """One validated record from the discovery provider."""
    address: str
    symbol: str
    market_cap_usd: float
    liquidity_usd: float
    holders_count: int

    @classmethod
    def parse(cls, raw: Any) -> "TokenListing":
        """Parse a raw discovery record. Raises ValueError on malformed input."""
        if not isinstance(raw, dict):
            raise ValueError(f"record is {type(raw).__name__}, expected object")

        address = raw.get("address")
        if not isinstance(address, str) or not address.strip():
            raise ValueError("missing address")
        symbol = raw.get("symbol")
        if not isinstance(symbol, str) or not symbol.strip():
            symbol = address[:8]

        metrics = {}
        for key in ("marketCapUSD", "liquidityUSD", "holdersCount"):
            value = raw.get(key)
            if isinstance(value, bool) or value is None:
                raise ValueError(f"missing {key}")
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ValueError(f"{key} is not numeric: {value!r}")
            if math.isnan(number) or math.isinf(number) or number < 0:
                raise ValueError(f"{key} out of range: {value!r}")
            metrics[key] = number

        return cls(
            address=address.strip(),
            symbol=symbol.strip(),
            market_cap_usd=metrics["marketCapUSD"],
            liquidity_usd=metrics["liquidityUSD"],
            holders_count=int(metrics["holdersCount"]),
        )


@dataclass(frozen=True)
class Opportunity:
    token_address: str
    chain: str
    symbol: str
    estimated_profit_usd: float
    estimated_gas_usd: float
    route: tuple[str, ...] = field(default_factory=tuple)
    market_cap_usd: float = 0.0
    liquidity_usd: float = 0.0
    holders_count: int = 0

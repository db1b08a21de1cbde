"""Collaborator interfaces consumed by the trading engine.

Implementations live in fake_providers (deterministic, for tests and paper
mode) and http_providers (network-backed). The engine only sees these types.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class ProviderError(Exception):
    """Transient failure talking to an external provider (network, rate limit, bad payload)."""


class NoRoute(ProviderError):
    """The quote provider found no liquidity path for the requested swap."""


@dataclass
class Quote:
    amount_in: float
    amount_out: float
    price_impact: float = 0.0
    gas_estimate: float = 0.0
    gas_price: float = 0.0  # smallest native unit per gas (wei, lamports)
    route: list[str] = field(default_factory=list)
    tx: dict[str, Any] = field(default_factory=dict)  # provider transaction payload, if any


@dataclass
class Submission:
    tx_hash: str


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timedOut"


class TokenDiscoveryProvider(Protocol):
    async def list_trending(self, chain: str) -> list[dict]:
        """Raw trending records: address, symbol, marketCapUSD, liquidityUSD, holdersCount."""
        ...


class QuoteProvider(Protocol):
    async def quote(self, chain: str, token_in: str, token_out: str, amount_in: float) -> Quote:
        """Quote a swap. Raises NoRoute when no path exists, ProviderError otherwise."""
        ...


class ExecutionProvider(Protocol):
    async def submit(self, chain: str, payload: dict[str, Any]) -> Submission:
        ...

    async def confirm(self, chain: str, tx_hash: str, timeout: float) -> ConfirmationStatus:
        ...


class RateSource(Protocol):
    async def rate(self, chain: str) -> float:
        """Native token price in USD."""
        ...

"""Deterministic in-memory providers.

Used by the test suite and by paper mode (TB_PROVIDER_MODE=fake). Nothing here
touches the network and nothing is random: the same inputs always produce the
same quotes, listings and confirmations.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any

from tradebot.services.providers import (
    ConfirmationStatus,
    NoRoute,
    ProviderError,
    Quote,
    Submission,
)
from tradebot.utils.constants import SUPPORTED_CHAINS, get_chain

logger = logging.getLogger(__name__)


@dataclass
class FakeMarket:
    """Native-per-token prices for one token. buy_price > sell_price is a normal spread."""
    buy_price: float
    sell_price: float
    impact_bps: float = 0.0  # linear price impact per native unit traded


class FakeDiscoveryProvider:
    def __init__(self, listings: dict[str, list[dict]] | None = None):
        self.listings = listings or {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    async def list_trending(self, chain: str) -> list[dict]:
        self.calls.append(chain)
        if chain in self.failures:
            raise self.failures[chain]
        return list(self.listings.get(chain, []))


class FakeQuoteProvider:
    def __init__(
        self,
        markets: dict[tuple[str, str], FakeMarket] | None = None,
        gas_estimate: float = 150_000,
        gas_price: float = 20e9,
    ):
        self.markets = {(c, t.lower()): m for (c, t), m in (markets or {}).items()}
        self.gas_estimate = gas_estimate
        self.gas_price = gas_price
        self.gas_by_chain: dict[str, tuple[float, float]] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str, str, float]] = []

    def set_market(self, chain: str, token: str, market: FakeMarket):
        self.markets[(chain, token.lower())] = market

    def fail(self, chain: str, token: str, exc: Exception):
        self.failures[(chain, token.lower())] = exc

    async def quote(self, chain: str, token_in: str, token_out: str, amount_in: float) -> Quote:
        self.calls.append((chain, token_in, token_out, amount_in))
        native = get_chain(chain).native_token.lower()
        buying = token_in.lower() == native
        token = (token_out if buying else token_in).lower()

        if (chain, token) in self.failures:
            raise self.failures[(chain, token)]
        market = self.markets.get((chain, token))
        if market is None:
            raise NoRoute(f"No route for {token} on {chain}")
        if amount_in <= 0:
            raise ProviderError("amount_in must be positive")

        if buying:
            impact = market.impact_bps * amount_in / 10_000
            amount_out = amount_in / market.buy_price * (1 - impact)
        else:
            native_out = amount_in * market.sell_price
            impact = market.impact_bps * native_out / 10_000
            amount_out = native_out * (1 - impact)

        gas_estimate, gas_price = self.gas_by_chain.get(chain, (self.gas_estimate, self.gas_price))
        return Quote(
            amount_in=amount_in,
            amount_out=max(amount_out, 0.0),
            price_impact=impact * 100,
            gas_estimate=gas_estimate,
            gas_price=gas_price,
            route=[token_in, token_out],
            tx={"to": token, "data": "0x", "value": amount_in if buying else 0},
        )


class PaperExecutionProvider:
    """Accepts every submission and confirms it, unless told otherwise."""

    def __init__(self, confirm_status: ConfirmationStatus = ConfirmationStatus.CONFIRMED):
        self.confirm_status = confirm_status
        self.submit_error: Exception | None = None
        self.submitted: list[tuple[str, dict[str, Any]]] = []

    async def submit(self, chain: str, payload: dict[str, Any]) -> Submission:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((chain, payload))
        tx_hash = f"paper-{chain}-{len(self.submitted):06d}"
        logger.info(f"PAPER submit on {chain}: {tx_hash}")
        return Submission(tx_hash=tx_hash)

    async def confirm(self, chain: str, tx_hash: str, timeout: float) -> ConfirmationStatus:
        return self.confirm_status


class StaticRateSource:
    def __init__(self, rates: dict[str, float] | None = None):
        self.rates = rates or {}

    async def rate(self, chain: str) -> float:
        if chain in self.rates:
            return self.rates[chain]
        return get_chain(chain).default_usd_rate


def _digest(*parts: str) -> int:
    return int(hashlib.sha256(":".join(parts).encode()).hexdigest()[:12], 16)


def demo_universe(
    chains: list[str],
    tokens_per_chain: int = 6,
) -> tuple[FakeDiscoveryProvider, FakeQuoteProvider]:
    """Build a stable synthetic market for paper mode.

    Every chain gets the same number of tokens spread across the risk tiers;
    roughly a third of them carry a buy/sell mispricing large enough to
    clear the default profit gates.
    """
    listings: dict[str, list[dict]] = {}
    markets: dict[tuple[str, str], FakeMarket] = {}

    for chain in chains:
        if chain not in SUPPORTED_CHAINS:
            continue
        info = get_chain(chain)
        prefix = "0x" if info.chain_id else ""
        rows = []
        for i in range(tokens_per_chain):
            seed = _digest(chain, str(i))
            address = f"{prefix}{seed:040x}"
            scale = 10 ** (i % 5)
            rows.append({
                "address": address,
                "symbol": f"{info.native_symbol[:2]}T{i}",
                "marketCapUSD": 60_000 * scale,
                "liquidityUSD": 6_000 * scale,
                "holdersCount": 60 * scale,
            })
            price = 1e-6 * (1 + seed % 1000)
            edge = 0.4 if seed % 3 == 0 else -0.01
            markets[(chain, address)] = FakeMarket(buy_price=price, sell_price=price * (1 + edge))
        listings[chain] = rows

    quotes = FakeQuoteProvider(markets, gas_price=1e9)
    if "solana" in chains:
        quotes.gas_by_chain["solana"] = (5_000, 1.0)  # lamports
    return FakeDiscoveryProvider(listings), quotes

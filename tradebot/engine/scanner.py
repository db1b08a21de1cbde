"""Per-chain opportunity discovery.

One scan pulls the trending list for a chain, drops malformed records and
tokens we already hold, and runs the round-trip simulation on the rest in
discovery order.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable

from tradebot.engine.opportunity import Opportunity, TokenListing
from tradebot.engine.config_store import ConfigStore
from tradebot.engine.simulator import ProfitabilitySimulator, QuoteUnavailable
from tradebot.services.providers import ProviderError, TokenDiscoveryProvider

logger = logging.getLogger(__name__)


class OpportunityScanner:
    def __init__(
        self,
        discovery: TokenDiscoveryProvider,
        simulator: ProfitabilitySimulator,
        has_open_trade: Callable[[str, str], bool],
        config_store: ConfigStore,
    ):
        self.discovery = discovery
        self.simulator = simulator
        self.has_open_trade = has_open_trade
        self.config_store = config_store

    async def discover(self, chain: str) -> list[TokenListing]:
        """Fetch and validate the trending list. Raises ProviderError on transport failure."""
        timeout = self.config_store.get().discovery_timeout_sec
        try:
            raw = await asyncio.wait_for(self.discovery.list_trending(chain), timeout=timeout)
        except asyncio.TimeoutError:
            raise ProviderError(f"discovery timed out after {timeout}s")
        if not isinstance(raw, (list, tuple)):
            raise ProviderError(f"discovery returned {type(raw).__name__}, expected a list")

        listings = []
        dropped = 0
        for record in raw:
            try:
                listings.append(TokenListing.parse(record))
            except ValueError as e:
                dropped += 1
                logger.debug(f"[{chain}] Dropped malformed discovery record: {e}")
        if dropped:
            logger.info(f"[{chain}] Dropped {dropped} malformed discovery records")
        return listings

    async def scan(
        self,
        chain: str,
        should_continue: Callable[[], bool] = lambda: True,
    ) -> AsyncIterator[Opportunity]:
        """Yield opportunities for `chain` in discovery order.

        A fresh generator is needed per tick. `should_continue` is checked
        before every simulation so a stop request ends the scan at the next
        suspension point. Raises ProviderError if discovery itself fails.
        """
        config = self.config_store.get()
        amount_in = config.amount_in_native
        limit = config.max_tokens_per_scan

        listings = await self.discover(chain)

        logger.info(f"[{chain}] {len(listings)} trending tokens")
        seen: set[str] = set()
        simulated = 0
        for listing in listings:
            if simulated >= limit:
                break
            if not should_continue():
                logger.info(f"[{chain}] Scan abandoned")
                return

            address = listing.address.lower()
            if address in seen or self.has_open_trade(listing.address, chain):
                continue
            seen.add(address)

            simulated += 1
            try:
                result = await self.simulator.simulate(chain, listing.address, amount_in)
            except QuoteUnavailable as e:
                logger.debug(f"[{chain}] {listing.symbol}: {e}")
                continue

            yield Opportunity(
                token_address=listing.address,
                chain=chain,
                symbol=listing.symbol,
                estimated_profit_usd=result.net_profit_usd,
                estimated_gas_usd=result.gas_cost_usd,
                route=result.route,
                market_cap_usd=listing.market_cap_usd,
                liquidity_usd=listing.liquidity_usd,
                holders_count=listing.holders_count,
            )

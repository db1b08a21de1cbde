"""Round-trip profitability simulation.

Quotes a buy (native -> token) for the trade size, then quotes selling the
exact amount received back to native. Profit is what comes back minus what
went in, less gas for both legs, priced in USD at the chain's native rate.
"""

import asyncio
import logging
from dataclasses import dataclass

from tradebot.engine.config_store import ConfigStore
from tradebot.services.providers import ProviderError, Quote, QuoteProvider, RateSource
from tradebot.utils.constants import get_chain

logger = logging.getLogger(__name__)


class QuoteUnavailable(Exception):
    """Either leg could not be quoted. Callers treat this as "no opportunity"."""


@dataclass
class SimulationResult:
    net_profit_usd: float
    gross_profit_native: float
    gas_cost_native: float
    gas_cost_usd: float
    native_usd_rate: float
    buy_quote: Quote
    sell_quote: Quote

    @property
    def route(self) -> tuple[str, ...]:
        return tuple(self.buy_quote.route) + tuple(self.sell_quote.route[1:])


def round_trip_profit_usd(
    amount_in: float,
    sell_out: float,
    gas_price: float,
    buy_gas: float,
    sell_gas: float,
    native_usd_rate: float,
    native_decimals: int = 18,
) -> tuple[float, float]:
    """Return (net_profit_usd, gas_cost_native)."""
    gas_cost_native = gas_price * (buy_gas + sell_gas) / 10 ** native_decimals
    net_native = (sell_out - amount_in) - gas_cost_native
    return net_native * native_usd_rate, gas_cost_native


class ProfitabilitySimulator:
    def __init__(self, quotes: QuoteProvider, rates: RateSource, config_store: ConfigStore):
        self.quotes = quotes
        self.rates = rates
        self.config_store = config_store

    @property
    def quote_timeout(self) -> float:
        return self.config_store.get().quote_timeout_sec

    async def _quote(self, chain: str, token_in: str, token_out: str, amount_in: float, leg: str) -> Quote:
        try:
            quote = await asyncio.wait_for(
                self.quotes.quote(chain, token_in, token_out, amount_in),
                timeout=self.quote_timeout,
            )
        except asyncio.TimeoutError:
            raise QuoteUnavailable(f"{leg} quote timed out after {self.quote_timeout}s")
        except ProviderError as e:
            raise QuoteUnavailable(f"{leg} quote failed: {e}") from e
        except Exception as e:
            logger.warning(f"[{chain}] {leg} quote for {token_in} -> {token_out} crashed: {e}", exc_info=True)
            raise QuoteUnavailable(f"{leg} quote failed unexpectedly: {e}") from e

        if quote.amount_out <= 0:
            raise QuoteUnavailable(f"{leg} quote returned zero liquidity")
        return quote

    async def simulate(self, chain: str, token_address: str, amount_in: float) -> SimulationResult:
        info = get_chain(chain)
        native = info.native_token

        buy = await self._quote(chain, native, token_address, amount_in, "buy")
        sell = await self._quote(chain, token_address, native, buy.amount_out, "sell")

        try:
            rate = await asyncio.wait_for(self.rates.rate(chain), timeout=self.quote_timeout)
        except (asyncio.TimeoutError, ProviderError) as e:
            raise QuoteUnavailable(f"native/USD rate unavailable for {chain}: {e}") from e
        except Exception as e:
            logger.warning(f"[{chain}] native/USD rate lookup crashed: {e}", exc_info=True)
            raise QuoteUnavailable(f"native/USD rate unavailable for {chain}: {e}") from e

        net_profit_usd, gas_cost_native = round_trip_profit_usd(
            amount_in=amount_in,
            sell_out=sell.amount_out,
            gas_price=buy.gas_price,
            buy_gas=buy.gas_estimate,
            sell_gas=sell.gas_estimate,
            native_usd_rate=rate,
            native_decimals=info.native_decimals,
        )

        logger.debug(
            f"[{chain}] {token_address[:10]} round trip: {amount_in} -> {buy.amount_out:.6g} -> "
            f"{sell.amount_out:.6g}, gas={gas_cost_native:.6g}, net=${net_profit_usd:.4f}"
        )
        return SimulationResult(
            net_profit_usd=net_profit_usd,
            gross_profit_native=sell.amount_out - amount_in,
            gas_cost_native=gas_cost_native,
            gas_cost_usd=gas_cost_native * rate,
            native_usd_rate=rate,
            buy_quote=buy,
            sell_quote=sell,
        )

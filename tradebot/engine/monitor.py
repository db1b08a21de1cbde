"""Position monitor: refreshes P/L for ACTIVE trades and applies the exit policy."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from tradebot.engine.config_store import ConfigStore
from tradebot.engine.dispatcher import ConfirmationPending, ExecutionDispatcher, ExecutionError
from tradebot.engine.trades import IllegalTransition, Trade, TradeNotFound, TradeStatus, TradeStore
from tradebot.schemas.engine_config import EngineConfig
from tradebot.services.providers import ConfirmationStatus, ProviderError, QuoteProvider, RateSource
from tradebot.utils.constants import get_chain

logger = logging.getLogger(__name__)


@dataclass
class ExitDecision:
    status: TradeStatus
    reason: str  # "take_profit", "stop_loss", "max_holding"


def pnl_percentage(entry_price: float, current_price: float) -> float:
    return (current_price - entry_price) / entry_price * 100


def closing_decision(reason: str, pnl: float) -> ExitDecision:
    if reason == "take_profit":
        return ExitDecision(TradeStatus.CLOSED_PROFIT, reason)
    if reason == "stop_loss":
        return ExitDecision(TradeStatus.CLOSED_LOSS, reason)
    return ExitDecision(TradeStatus.CLOSED_PROFIT if pnl >= 0 else TradeStatus.CLOSED_LOSS, reason)


def exit_decision(trade: Trade, config: EngineConfig, now: datetime | None = None) -> ExitDecision | None:
    """Exit policy for one priced ACTIVE trade, or None to keep holding.

    Holding time counts from when the buy confirmed, not from admission.
    """
    pnl = trade.profit_loss_percentage
    if pnl is None:
        return None
    if pnl >= config.take_profit_pct:
        return closing_decision("take_profit", pnl)
    if pnl <= config.stop_loss_pct:
        return closing_decision("stop_loss", pnl)

    now = now or datetime.now(timezone.utc)
    held_since = trade.opened_at or trade.created_at
    if (now - held_since).total_seconds() > config.max_holding_sec:
        return closing_decision("max_holding", pnl)
    return None


class PositionMonitor:
    def __init__(
        self,
        store: TradeStore,
        quotes: QuoteProvider,
        dispatcher: ExecutionDispatcher,
        rates: RateSource,
        config_store: ConfigStore,
    ):
        self.store = store
        self.quotes = quotes
        self.rates = rates
        self.dispatcher = dispatcher
        self.config_store = config_store
        self._closing: set[str] = set()

    async def current_price(self, trade: Trade) -> float:
        """Native per token, from a sell quote of the full held amount."""
        native = get_chain(trade.chain).native_token
        timeout = self.config_store.get().quote_timeout_sec
        try:
            quote = await asyncio.wait_for(
                self.quotes.quote(trade.chain, trade.token_address, native, trade.amount_out),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderError(f"price quote timed out after {timeout}s")
        if quote.amount_out <= 0:
            raise ProviderError("price quote returned zero liquidity")
        return quote.amount_out / trade.amount_out

    async def tick(self) -> int:
        """Evaluate every ACTIVE trade once. Returns the number of trades closed."""
        trades = [t for t in self.store.active() if t.id not in self._closing]
        if not trades:
            return 0

        results = await asyncio.gather(*(self._evaluate(t) for t in trades), return_exceptions=True)

        closed = 0
        for trade, result in zip(trades, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"[{trade.chain}] Monitoring {trade.id} ({trade.token_symbol}) failed: {result}",
                    exc_info=result,
                )
            elif result:
                closed += 1
        return closed

    async def _evaluate(self, trade: Trade) -> bool:
        if trade.exit_tx_hash:
            # A sell is already in flight; P/L stays frozen at the submitted price
            return await self._settle_pending_exit(trade)

        try:
            price = await self.current_price(trade)
        except ProviderError as e:
            logger.warning(f"[{trade.chain}] No price for {trade.token_symbol} ({trade.id}): {e}")
            return False

        try:
            trade = self.store.update_price(trade.id, price, pnl_percentage(trade.entry_price, price))
        except (TradeNotFound, IllegalTransition):
            # Closed while we were quoting
            return False

        decision = exit_decision(trade, self.config_store.get())
        if decision is None:
            return False
        return await self._close(trade, decision)

    async def _close(self, trade: Trade, decision: ExitDecision) -> bool:
        self._closing.add(trade.id)
        try:
            try:
                exit_tx_hash = await self.dispatcher.exit(trade)
            except ConfirmationPending as e:
                logger.warning(
                    f"[{trade.chain}] Exit ({decision.reason}) for {trade.id} unconfirmed, "
                    f"watching {e.tx_hash}: {e}"
                )
                self.store.mark_exit_pending(trade.id, e.tx_hash, decision.reason)
                return False
            except ExecutionError as e:
                logger.warning(
                    f"[{trade.chain}] Exit ({decision.reason}) for {trade.id} failed, will retry: {e}"
                )
                return False
            return await self._finish(trade, decision, exit_tx_hash)
        finally:
            self._closing.discard(trade.id)

    async def _settle_pending_exit(self, trade: Trade) -> bool:
        """Re-check a sell that was submitted earlier. Only a definite failure allows a new sell."""
        self._closing.add(trade.id)
        try:
            status = await self.dispatcher.confirm(trade.chain, trade.exit_tx_hash)
            if status == ConfirmationStatus.CONFIRMED:
                decision = closing_decision(trade.exit_reason, trade.profit_loss_percentage or 0.0)
                return await self._finish(trade, decision, trade.exit_tx_hash)
            if status == ConfirmationStatus.FAILED:
                logger.warning(f"[{trade.chain}] Exit {trade.exit_tx_hash} for {trade.id} failed, will resubmit")
                self.store.clear_exit_pending(trade.id)
            else:
                logger.info(f"[{trade.chain}] Exit {trade.exit_tx_hash} for {trade.id} still pending")
            return False
        finally:
            self._closing.discard(trade.id)

    async def _finish(self, trade: Trade, decision: ExitDecision, exit_tx_hash: str) -> bool:
        realised = (trade.profit_loss_native or 0.0) * await self._usd_rate(trade.chain)
        self.store.close(trade.id, decision.status, decision.reason, exit_tx_hash, realised)
        logger.info(
            f"[{trade.chain}] Closed {trade.token_symbol} ({trade.id}) on {decision.reason} "
            f"at {trade.profit_loss_percentage or 0.0:+.2f}%"
        )
        return True

    async def _usd_rate(self, chain: str) -> float:
        try:
            return await asyncio.wait_for(self.rates.rate(chain), timeout=self.config_store.get().quote_timeout_sec)
        except (asyncio.TimeoutError, ProviderError) as e:
            logger.warning(f"[{chain}] Rate unavailable, using static rate: {e}")
            return get_chain(chain).default_usd_rate

"""Turns admitted trades into submitted swaps.

Entry: PENDING -> EXECUTING, fresh buy quote, submit, bounded confirmation,
then ACTIVE on success or FAILED with the reason recorded. No retries here;
a failed token can be rediscovered on a later tick.

Exit: submits the sell leg for a trade the position monitor wants to close.
"""

import asyncio
import logging

from tradebot.engine.config_store import ConfigStore
from tradebot.engine.trades import Trade, TradeStore
from tradebot.services.providers import (
    ConfirmationStatus,
    ExecutionProvider,
    ProviderError,
    Quote,
    QuoteProvider,
)
from tradebot.utils.constants import get_chain

logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    pass


class ConfirmationPending(ExecutionError):
    """Submitted, but the outcome is unknown. The transaction may still be mined."""

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class ExecutionDispatcher:
    def __init__(
        self,
        store: TradeStore,
        quotes: QuoteProvider,
        execution: ExecutionProvider,
        config_store: ConfigStore,
    ):
        self.store = store
        self.quotes = quotes
        self.execution = execution
        self.config_store = config_store

    async def execute(self, trade_id: str) -> Trade:
        """Drive one admitted trade to ACTIVE or FAILED. Returns the final record."""
        trade = self.store.mark_executing(trade_id)
        try:
            quote, tx_hash = await self._swap(
                trade.chain,
                get_chain(trade.chain).native_token,
                trade.token_address,
                trade.amount_in,
                "buy",
            )
        except ExecutionError as e:
            logger.warning(f"[{trade.chain}] {trade.token_symbol} buy failed: {e}")
            return self.store.mark_failed(trade_id, str(e))
        except Exception as e:
            # Never leave a trade stuck in EXECUTING
            logger.error(f"[{trade.chain}] {trade.token_symbol} buy crashed: {e}", exc_info=True)
            return self.store.mark_failed(trade_id, f"unexpected error: {e}")

        entry_price = trade.amount_in / quote.amount_out
        logger.info(
            f"[{trade.chain}] Bought {quote.amount_out:.6g} {trade.token_symbol} "
            f"for {trade.amount_in} @ {entry_price:.6g} ({tx_hash})"
        )
        return self.store.mark_active(trade_id, entry_price=entry_price, amount_out=quote.amount_out, tx_hash=tx_hash)

    async def exit(self, trade: Trade) -> str:
        """Sell the tokens held by `trade`. Returns the exit tx hash.

        Raises ConfirmationPending when the sell was submitted but not confirmed
        in time, and ExecutionError when it definitely did not go through.
        """
        if not trade.amount_out:
            raise ExecutionError(f"{trade.id} holds no tokens")
        _quote, tx_hash = await self._swap(
            trade.chain,
            trade.token_address,
            get_chain(trade.chain).native_token,
            trade.amount_out,
            "sell",
        )
        logger.info(f"[{trade.chain}] Sold {trade.amount_out:.6g} {trade.token_symbol} ({tx_hash})")
        return tx_hash

    async def _swap(
        self,
        chain: str,
        token_in: str,
        token_out: str,
        amount_in: float,
        leg: str,
    ) -> tuple[Quote, str]:
        config = self.config_store.get()

        try:
            quote = await asyncio.wait_for(
                self.quotes.quote(chain, token_in, token_out, amount_in),
                timeout=config.quote_timeout_sec,
            )
        except asyncio.TimeoutError:
            raise ExecutionError(f"{leg} quote timed out")
        except ProviderError as e:
            raise ExecutionError(f"{leg} quote failed: {e}") from e
        if quote.amount_out <= 0:
            raise ExecutionError(f"{leg} quote returned zero liquidity")

        payload = {
            "leg": leg,
            "token_in": token_in,
            "token_out": token_out,
            "amount_in": amount_in,
            "min_amount_out": quote.amount_out,
            **quote.tx,
        }
        try:
            submission = await asyncio.wait_for(
                self.execution.submit(chain, payload),
                timeout=config.submit_timeout_sec,
            )
        except asyncio.TimeoutError:
            raise ExecutionError(f"{leg} submission timed out")
        except ProviderError as e:
            raise ExecutionError(f"{leg} submission rejected: {e}") from e

        status = await self.confirm(chain, submission.tx_hash)
        if status == ConfirmationStatus.TIMED_OUT:
            raise ConfirmationPending(f"{leg} transaction {submission.tx_hash} {status.value}", submission.tx_hash)
        if status != ConfirmationStatus.CONFIRMED:
            raise ExecutionError(f"{leg} transaction {submission.tx_hash} {status.value}")
        return quote, submission.tx_hash

    async def confirm(self, chain: str, tx_hash: str) -> ConfirmationStatus:
        """Bounded confirmation check. A provider error counts as not yet known."""
        timeout = self.config_store.get().confirm_timeout_sec
        try:
            # Small grace so the provider's own timeout wins the race
            return await asyncio.wait_for(
                self.execution.confirm(chain, tx_hash, timeout),
                timeout=timeout + 5,
            )
        except asyncio.TimeoutError:
            return ConfirmationStatus.TIMED_OUT
        except ProviderError as e:
            logger.warning(f"[{chain}] Confirmation check for {tx_hash} failed: {e}")
            return ConfirmationStatus.TIMED_OUT

"""Trade lifecycle: the Trade record, its state machine and the store that owns it.

PENDING -> EXECUTING -> ACTIVE -> CLOSED_PROFIT | CLOSED_LOSS
EXECUTING -> FAILED

The store is the only writer of Trade records. Records are frozen dataclasses;
every transition builds a new record under the trade's own lock and swaps it
into the index under the store lock, so readers always see whole records.
"""

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from tradebot.engine.opportunity import Opportunity
from tradebot.engine.risk import RiskAssessment
from tradebot.utils.constants import RiskTier

logger = logging.getLogger(__name__)


class TradeStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    ACTIVE = "active"
    CLOSED_PROFIT = "closed_profit"
    CLOSED_LOSS = "closed_loss"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TradeStatus.CLOSED_PROFIT, TradeStatus.CLOSED_LOSS, TradeStatus.FAILED})

_TRANSITIONS: dict[TradeStatus, frozenset[TradeStatus]] = {
    TradeStatus.PENDING: frozenset({TradeStatus.EXECUTING}),
    TradeStatus.EXECUTING: frozenset({TradeStatus.ACTIVE, TradeStatus.FAILED}),
    TradeStatus.ACTIVE: frozenset({TradeStatus.CLOSED_PROFIT, TradeStatus.CLOSED_LOSS}),
}


class IllegalTransition(Exception):
    pass


class TradeNotFound(KeyError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Trade:
    id: str
    token_address: str
    token_symbol: str
    chain: str
    risk_tier: RiskTier
    risk_score: int
    amount_in: float  # native units
    estimated_profit_usd: float
    status: TradeStatus = TradeStatus.PENDING
    entry_price: float | None = None  # native per token
    current_price: float | None = None
    profit_loss_percentage: float | None = None  # percent
    amount_out: float | None = None  # tokens held after the buy leg
    tx_hash: str | None = None
    exit_tx_hash: str | None = None  # set while ACTIVE when a sell is awaiting confirmation
    exit_reason: str | None = None  # "take_profit", "stop_loss", "max_holding"
    realised_profit_usd: float | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    opened_at: datetime | None = None  # set when the buy leg confirms
    closed_at: datetime | None = None
    status_history: tuple[TradeStatus, ...] = (TradeStatus.PENDING,)

    @property
    def key(self) -> tuple[str, str]:
        return (self.token_address.lower(), self.chain)

    @property
    def profit_loss_native(self) -> float | None:
        if self.profit_loss_percentage is None:
            return None
        return self.amount_in * self.profit_loss_percentage / 100


TradeListener = Callable[[str, Trade], None]


class TradeStore:
    """Indexed table of open trades plus a bounded, newest-first history."""

    def __init__(self, history_limit: int = 500, history: list[Trade] | None = None):
        self._lock = threading.Lock()
        self._trades: dict[str, Trade] = {}  # non-terminal only
        self._open_index: dict[tuple[str, str], str] = {}
        self._trade_locks: dict[str, threading.Lock] = {}
        self._history: deque[Trade] = deque(history or [], maxlen=history_limit)
        self._listeners: list[TradeListener] = []

    # -- observers ---------------------------------------------------------

    def add_listener(self, listener: TradeListener):
        """Called with (event, trade); event is new_trade, trade_update, trade_executed or trade_closed."""
        self._listeners.append(listener)

    def _emit(self, event: str, trade: Trade):
        for listener in list(self._listeners):
            try:
                listener(event, trade)
            except Exception as e:
                logger.error(f"Trade listener failed on {event} for {trade.id}: {e}", exc_info=True)

    # -- reads -------------------------------------------------------------

    def get(self, trade_id: str) -> Trade | None:
        with self._lock:
            trade = self._trades.get(trade_id)
            if trade is not None:
                return trade
            return next((t for t in self._history if t.id == trade_id), None)

    def open_trades(self) -> list[Trade]:
        with self._lock:
            trades = list(self._trades.values())
        return sorted(trades, key=lambda t: t.created_at)

    def active(self) -> list[Trade]:
        return [t for t in self.open_trades() if t.status == TradeStatus.ACTIVE]

    def history(self, limit: int | None = None) -> list[Trade]:
        with self._lock:
            trades = list(self._history)
        return trades[:limit] if limit is not None else trades

    def has_open(self, token_address: str, chain: str) -> bool:
        with self._lock:
            return (token_address.lower(), chain) in self._open_index

    def open_count(self) -> int:
        with self._lock:
            return len(self._trades)

    # -- admission ---------------------------------------------------------

    def admit(
        self,
        opportunity: Opportunity,
        assessment: RiskAssessment,
        amount_in: float,
        max_concurrent: int,
    ) -> Trade | None:
        """Create a PENDING trade, or return None if the dedupe or capacity check refuses it."""
        key = (opportunity.token_address.lower(), opportunity.chain)
        with self._lock:
            if key in self._open_index:
                logger.debug(f"Refused {opportunity.symbol} on {opportunity.chain}: already open")
                return None
            if len(self._trades) >= max_concurrent:
                logger.debug(
                    f"Refused {opportunity.symbol} on {opportunity.chain}: "
                    f"{len(self._trades)}/{max_concurrent} trades open"
                )
                return None

            trade = Trade(
                id=f"trade-{uuid.uuid4().hex[:12]}",
                token_address=opportunity.token_address,
                token_symbol=opportunity.symbol,
                chain=opportunity.chain,
                risk_tier=assessment.tier,
                risk_score=assessment.score,
                amount_in=amount_in,
                estimated_profit_usd=opportunity.estimated_profit_usd,
            )
            self._trades[trade.id] = trade
            self._open_index[key] = trade.id
            self._trade_locks[trade.id] = threading.Lock()

        logger.info(
            f"Admitted {trade.token_symbol} on {trade.chain} as {trade.id} "
            f"(tier={trade.risk_tier.value}, est=${trade.estimated_profit_usd:.2f})"
        )
        self._emit("new_trade", trade)
        return trade

    # -- transitions -------------------------------------------------------

    def mark_executing(self, trade_id: str) -> Trade:
        return self._apply(trade_id, TradeStatus.EXECUTING)

    def mark_active(self, trade_id: str, entry_price: float, amount_out: float, tx_hash: str) -> Trade:
        return self._apply(
            trade_id,
            TradeStatus.ACTIVE,
            entry_price=entry_price,
            current_price=entry_price,
            profit_loss_percentage=0.0,
            amount_out=amount_out,
            tx_hash=tx_hash,
        )

    def mark_failed(self, trade_id: str, reason: str) -> Trade:
        return self._apply(trade_id, TradeStatus.FAILED, error=reason)

    def update_price(self, trade_id: str, current_price: float, profit_loss_percentage: float) -> Trade:
        return self._apply(
            trade_id,
            None,
            require=TradeStatus.ACTIVE,
            current_price=current_price,
            profit_loss_percentage=profit_loss_percentage,
        )

    def mark_exit_pending(self, trade_id: str, exit_tx_hash: str, exit_reason: str) -> Trade:
        """Record a submitted sell whose outcome is not yet known. The trade stays ACTIVE."""
        return self._apply(
            trade_id,
            None,
            require=TradeStatus.ACTIVE,
            exit_tx_hash=exit_tx_hash,
            exit_reason=exit_reason,
        )

    def clear_exit_pending(self, trade_id: str) -> Trade:
        return self._apply(trade_id, None, require=TradeStatus.ACTIVE, exit_tx_hash=None, exit_reason=None)

    def close(
        self,
        trade_id: str,
        status: TradeStatus,
        exit_reason: str,
        exit_tx_hash: str | None = None,
        realised_profit_usd: float | None = None,
    ) -> Trade:
        if status not in (TradeStatus.CLOSED_PROFIT, TradeStatus.CLOSED_LOSS):
            raise IllegalTransition(f"close() cannot move a trade to {status.value}")
        return self._apply(
            trade_id,
            status,
            exit_reason=exit_reason,
            exit_tx_hash=exit_tx_hash,
            realised_profit_usd=realised_profit_usd,
        )

    def _lock_for(self, trade_id: str) -> threading.Lock:
        with self._lock:
            lock = self._trade_locks.get(trade_id)
        if lock is None:
            raise TradeNotFound(trade_id)
        return lock

    def _apply(
        self,
        trade_id: str,
        to_status: TradeStatus | None,
        require: TradeStatus | None = None,
        **changes,
    ) -> Trade:
        with self._lock_for(trade_id):
            with self._lock:
                current = self._trades.get(trade_id)
            if current is None:
                # Closed by whoever held the lock before us
                raise TradeNotFound(trade_id)

            if to_status is not None and to_status not in _TRANSITIONS.get(current.status, ()):
                raise IllegalTransition(
                    f"{trade_id}: {current.status.value} -> {to_status.value} is not allowed"
                )
            if require is not None and current.status != require:
                raise IllegalTransition(
                    f"{trade_id}: expected {require.value}, found {current.status.value}"
                )

            now = _now()
            if to_status is not None:
                changes["status"] = to_status
                changes["status_history"] = current.status_history + (to_status,)
                if to_status.is_terminal:
                    changes["closed_at"] = now
                elif to_status == TradeStatus.ACTIVE:
                    changes["opened_at"] = now
            updated = replace(current, updated_at=now, **changes)

            with self._lock:
                if updated.status.is_terminal:
                    del self._trades[trade_id]
                    self._open_index.pop(updated.key, None)
                    self._trade_locks.pop(trade_id, None)
                    self._history.appendleft(updated)
                else:
                    self._trades[trade_id] = updated

        if to_status is not None:
            logger.info(f"{trade_id} {current.status.value} -> {to_status.value}")
        if updated.status.is_terminal:
            self._emit("trade_closed", updated)
        elif to_status == TradeStatus.ACTIVE:
            self._emit("trade_executed", updated)
        else:
            self._emit("trade_update", updated)
        return updated

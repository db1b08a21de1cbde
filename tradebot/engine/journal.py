"""Durable record of finished trades and per-chain scan cycles.

Writes are best effort: a database problem is logged and swallowed here so it
never reaches the trading loop.
"""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from tradebot.engine.trades import Trade, TradeStatus
from tradebot.models.cycle_log import CycleLog
from tradebot.models.trade_record import TradeRecord
from tradebot.utils.constants import RiskTier

logger = logging.getLogger(__name__)


def _to_record(trade: Trade) -> TradeRecord:
    return TradeRecord(
        trade_id=trade.id,
        token_address=trade.token_address,
        token_symbol=trade.token_symbol,
        chain=trade.chain,
        status=trade.status.value,
        risk_tier=trade.risk_tier.value,
        risk_score=trade.risk_score,
        amount_in=trade.amount_in,
        estimated_profit_usd=trade.estimated_profit_usd,
        entry_price=trade.entry_price,
        exit_price=trade.current_price,
        amount_out=trade.amount_out,
        profit_loss_percentage=trade.profit_loss_percentage,
        realised_profit_usd=trade.realised_profit_usd,
        tx_hash=trade.tx_hash,
        exit_tx_hash=trade.exit_tx_hash,
        exit_reason=trade.exit_reason,
        error=trade.error,
        created_at=trade.created_at,
        opened_at=trade.opened_at,
        closed_at=trade.closed_at or trade.updated_at,
    )


def _from_record(row: TradeRecord) -> Trade:
    status = TradeStatus(row.status)
    if status == TradeStatus.FAILED:
        path = (TradeStatus.PENDING, TradeStatus.EXECUTING, TradeStatus.FAILED)
    else:
        path = (TradeStatus.PENDING, TradeStatus.EXECUTING, TradeStatus.ACTIVE, status)
    return Trade(
        id=row.trade_id,
        token_address=row.token_address,
        token_symbol=row.token_symbol,
        chain=row.chain,
        risk_tier=RiskTier(row.risk_tier),
        risk_score=row.risk_score,
        amount_in=row.amount_in,
        estimated_profit_usd=row.estimated_profit_usd,
        status=status,
        entry_price=row.entry_price,
        current_price=row.exit_price,
        profit_loss_percentage=row.profit_loss_percentage,
        amount_out=row.amount_out,
        tx_hash=row.tx_hash,
        exit_tx_hash=row.exit_tx_hash,
        exit_reason=row.exit_reason,
        realised_profit_usd=row.realised_profit_usd,
        error=row.error,
        created_at=row.created_at,
        opened_at=row.opened_at,
        updated_at=row.closed_at,
        closed_at=row.closed_at,
        status_history=path,
    )


class TradeJournal:
    def __init__(self, engine: Engine):
        self.engine = engine

    def record_trade(self, trade: Trade) -> bool:
        if not trade.status.is_terminal:
            logger.warning(f"Not journaling {trade.id}: status {trade.status.value} is not terminal")
            return False
        try:
            with Session(self.engine) as session:
                session.add(_to_record(trade))
                session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to journal trade {trade.id}: {e}", exc_info=True)
            return False

    def log_cycle(
        self,
        chain: str,
        status: str,
        opportunities: int = 0,
        admitted: int = 0,
        duration_ms: int | None = None,
        message: str | None = None,
    ):
        try:
            with Session(self.engine) as session:
                session.add(CycleLog(
                    chain=chain,
                    status=status,
                    opportunities=opportunities,
                    admitted=admitted,
                    duration_ms=duration_ms,
                    message=message,
                ))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write cycle log for {chain}: {e}", exc_info=True)

    def recent_trades(self, limit: int = 500) -> list[Trade]:
        """Most recent terminal trades first, for seeding the in-memory history."""
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(TradeRecord).order_by(TradeRecord.closed_at.desc()).limit(limit)
                ).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read trade journal: {e}", exc_info=True)
            return []
        return [_from_record(r) for r in rows]

    def cycle_logs(self, chain: str | None = None, status: str | None = None, limit: int = 100) -> list[CycleLog]:
        with Session(self.engine) as session:
            query = select(CycleLog)
            if chain:
                query = query.where(CycleLog.chain == chain)
            if status:
                query = query.where(CycleLog.status == status)
            query = query.order_by(CycleLog.timestamp.desc()).limit(limit)
            return list(session.exec(query).all())

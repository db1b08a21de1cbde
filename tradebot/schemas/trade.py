"""Pydantic schemas for trade API responses."""

from datetime import datetime

from pydantic import BaseModel

from tradebot.engine.trades import TradeStatus
from tradebot.utils.constants import RiskTier


class TradeRead(BaseModel):
    id: str
    token_address: str
    token_symbol: str
    chain: str
    status: TradeStatus
    risk_tier: RiskTier
    risk_score: int
    amount_in: float
    estimated_profit_usd: float
    entry_price: float | None
    current_price: float | None
    profit_loss_percentage: float | None
    amount_out: float | None
    realised_profit_usd: float | None
    tx_hash: str | None
    exit_tx_hash: str | None
    exit_reason: str | None
    error: str | None
    created_at: datetime
    updated_at: datetime
    opened_at: datetime | None
    closed_at: datetime | None
    status_history: list[TradeStatus]

    model_config = {"from_attributes": True}


class BotStatus(BaseModel):
    running: bool
    mode: str
    chains: list[str]
    trade_count: int
    last_tick_at: datetime | None
    cycle_count: int
    error_count: int


class BotStats(BaseModel):
    total_trades: int
    active_trades: int
    completed_trades: int
    failed_trades: int
    total_profit_usd: float
    win_rate: float
    profit_per_trade_usd: float
    avg_pnl_pct: float
    cycle_count: int
    error_count: int

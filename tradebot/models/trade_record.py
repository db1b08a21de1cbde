"""TradeRecord model: one row per trade that reached a terminal state."""

from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class TradeRecord(SQLModel, table=True):
    __tablename__ = "trade_record"

    id: int | None = Field(default=None, primary_key=True)
    trade_id: str = Field(index=True, unique=True)
    token_address: str = Field(index=True)
    token_symbol: str
    chain: str = Field(index=True)
    status: str  # "closed_profit", "closed_loss", "failed"
    risk_tier: str
    risk_score: int
    amount_in: float
    estimated_profit_usd: float
    entry_price: float | None = None
    exit_price: float | None = None
    amount_out: float | None = None
    profit_loss_percentage: float | None = None
    realised_profit_usd: float | None = None
    tx_hash: str | None = None
    exit_tx_hash: str | None = None
    exit_reason: str | None = None  # "take_profit", "stop_loss", "max_holding"
    error: str | None = None
    created_at: datetime
    opened_at: datetime | None = None
    closed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

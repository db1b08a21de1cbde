"""CycleLog model: per-chain scan log."""

from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class CycleLog(SQLModel, table=True):
    __tablename__ = "cycle_log"

    id: int | None = Field(default=None, primary_key=True)
    chain: str = Field(index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str  # "success", "error", "skipped"
    opportunities: int = 0
    admitted: int = 0
    duration_ms: int | None = None
    message: str | None = None

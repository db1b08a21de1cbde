"""Database models."""

from tradebot.models.trade_record import TradeRecord
from tradebot.models.cycle_log import CycleLog

__all__ = [
    "TradeRecord",
    "CycleLog",
]

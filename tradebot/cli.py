"""CLI tool for operator tasks.

Usage:
    python -m tradebot.cli tick        # run one scan tick with the configured providers
    python -m tradebot.cli trades      # list journaled trades
    python -m tradebot.cli config      # print the effective engine config
"""

import asyncio
import json
import sys

from tradebot.config import settings
from tradebot.database import create_db_and_tables, engine
from tradebot.engine.config_store import ConfigStore
from tradebot.engine.factory import build_controller
from tradebot.engine.journal import TradeJournal
from tradebot.utils.logging import setup_logging


async def _load_config() -> ConfigStore:
    store = ConfigStore()
    await store.load(settings.engine_config_url, timeout=settings.http_timeout_sec)
    return store


async def _tick():
    create_db_and_tables()
    controller = build_controller(settings, journal=TradeJournal(engine), config_store=await _load_config())
    summary = await controller.run_tick()
    print(json.dumps(summary, indent=2, default=str))
    for trade in controller.get_active_trades():
        print(f"  {trade.id} {trade.token_symbol:<8} {trade.chain:<10} {trade.status.value:<10} {trade.tx_hash or ''}")


def show_trades(limit: int = 20):
    create_db_and_tables()
    trades = TradeJournal(engine).recent_trades(limit)
    if not trades:
        print("No journaled trades.")
        return
    for t in trades:
        pnl = f"{t.profit_loss_percentage:+.2f}%" if t.profit_loss_percentage is not None else "-"
        print(f"{t.closed_at:%Y-%m-%d %H:%M} {t.token_symbol:<8} {t.chain:<10} {t.status.value:<14} {pnl:>8} {t.exit_reason or t.error or ''}")


async def _show_config():
    store = await _load_config()
    print(store.get().model_dump_json(indent=2))


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m tradebot.cli <command>")
        print("Commands: tick, trades, config")
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]
    if command == "tick":
        asyncio.run(_tick())
    elif command == "trades":
        show_trades(int(sys.argv[2]) if len(sys.argv) > 2 else 20)
    elif command == "config":
        asyncio.run(_show_config())
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()

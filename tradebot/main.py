"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tradebot.config import settings
from tradebot.database import create_db_and_tables, engine
from tradebot.engine.config_store import ConfigStore
from tradebot.engine.factory import build_controller
from tradebot.engine.journal import TradeJournal
from tradebot.utils.logging import setup_logging
from tradebot.api import bot, system


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    # Remote config is best effort; defaults apply when it is missing or broken
    config_store = ConfigStore()
    await config_store.load(settings.engine_config_url, timeout=settings.http_timeout_sec)

    controller = build_controller(settings, journal=TradeJournal(engine), config_store=config_store)
    app.state.controller = controller
    if settings.autostart:
        controller.start()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from tradebot.services.telegram_bot import TelegramBot
        telegram_bot = TelegramBot(
            token=settings.telegram_bot_token,
            chat_ids=settings.telegram_chat_ids,
            controller=controller,
            engine_loop=asyncio.get_running_loop(),
        )
        telegram_bot.start()

    yield

    if telegram_bot:
        telegram_bot.stop()
    controller.close()


app = FastAPI(
    title="Tradebot",
    description="Multi-chain token trading engine with control API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(bot.router)
app.include_router(system.router)

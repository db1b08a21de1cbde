"""Telegram bot for trade notifications and remote control."""

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)

from tradebot.engine.controller import BotController
from tradebot.engine.trades import Trade

logger = logging.getLogger(__name__)


def format_event(event: str, payload: Any) -> str | None:
    """Render a controller event as a chat message, or None for events we don't push."""
    if event == "new_trade":
        t: Trade = payload
        return (
            f"New trade {t.token_symbol} on {t.chain}\n"
            f"Tier: {t.risk_tier.value} | est. ${t.estimated_profit_usd:.2f}"
        )
    if event == "trade_executed":
        t = payload
        return f"Bought {t.token_symbol} on {t.chain} @ {t.entry_price:.6g}\nTx: {t.tx_hash}"
    if event == "trade_closed":
        t = payload
        if t.error:
            return f"Trade {t.token_symbol} on {t.chain} failed: {t.error}"
        pnl = f"{t.profit_loss_percentage:+.2f}%" if t.profit_loss_percentage is not None else "n/a"
        usd = f" (${t.realised_profit_usd:+.2f})" if t.realised_profit_usd is not None else ""
        return f"Closed {t.token_symbol} on {t.chain}: {t.status.value} {pnl}{usd}\nReason: {t.exit_reason}"
    if event == "bot_status":
        return f"Bot {'started' if payload['running'] else 'stopped'} ({payload['mode']})"
    return None


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop.

    Commands that touch the scheduler are forwarded to the engine's loop.
    """

    def __init__(
        self,
        token: str,
        chat_ids: list[int],
        controller: BotController,
        engine_loop: asyncio.AbstractEventLoop,
    ):
        self.token = token
        self.chat_ids = set(chat_ids)
        self.controller = controller
        self.engine_loop = engine_loop
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _on_engine(self, fn: Callable[[], Any]) -> Any:
        async def _call():
            return fn()

        future = asyncio.run_coroutine_threadsafe(_call(), self.engine_loop)
        return await asyncio.wrap_future(future)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        status = self.controller.get_status()
        stats = self.controller.get_stats()
        last_tick = status["last_tick_at"].strftime("%H:%M:%S UTC") if status["last_tick_at"] else "never"
        text = (
            f"Bot: {'running' if status['running'] else 'stopped'} ({status['mode']})\n"
            f"Open trades: {status['trade_count']}\n"
            f"Cycles: {status['cycle_count']} | errors: {status['error_count']}\n"
            f"Last tick: {last_tick}\n"
            f"Closed: {stats['completed_trades']} | win rate {stats['win_rate']:.1f}% | "
            f"P/L ${stats['total_profit_usd']:+.2f}"
        )
        await update.message.reply_text(text)

    async def _cmd_trades(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        trades = self.controller.get_active_trades()
        if not trades:
            await update.message.reply_text("No open trades.")
            return

        lines = []
        for t in trades:
            pnl = f"{t.profit_loss_percentage:+.2f}%" if t.profit_loss_percentage is not None else "-"
            lines.append(f"{t.token_symbol} ({t.chain}): {t.status.value} | {t.risk_tier.value} | {pnl}")
        await update.message.reply_text("\n".join(lines))

    async def _cmd_startbot(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        status = await self._on_engine(self.controller.start)
        await update.message.reply_text(f"Bot running: {status['running']}")

    async def _cmd_stopbot(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, stop", callback_data="confirm_stop"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Stop scanning? Open trades stay open until the bot is started again.",
            reply_markup=keyboard,
        )

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        if query.data == "confirm_stop":
            status = await self._on_engine(self.controller.stop)
            await query.edit_message_text(f"Bot running: {status['running']}")

    def _on_event(self, event: str, payload: Any):
        """Controller listener; called on the engine loop."""
        message = format_event(event, payload)
        if message and self._loop:
            asyncio.run_coroutine_threadsafe(self.send_notification(message), self._loop)

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("trades", self._cmd_trades))
        self._app.add_handler(CommandHandler("startbot", self._cmd_startbot))
        self._app.add_handler(CommandHandler("stopbot", self._cmd_stopbot))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        self._unsubscribe = self.controller.subscribe(self._on_event)
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._unsubscribe:
            self._unsubscribe()
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)

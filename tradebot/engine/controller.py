"""Bot controller: owns the scan and monitor jobs and ties the engine together.

One tick fans out a scan per configured chain (bounded by scan_concurrency).
Each opportunity is classified, gated on profit and risk, admitted into the
trade store and executed in discovery order. The position monitor runs on its
own interval.

start() and stop() are idempotent. Every start() issues a fresh RunToken that
the scheduled jobs carry; stop() revokes it and removes the jobs, so in-flight
work finishes its current external call and then stops at the next check.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

import numpy as np
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tradebot.engine.config_store import ConfigStore
from tradebot.engine.dispatcher import ExecutionDispatcher
from tradebot.engine.journal import TradeJournal
from tradebot.engine.monitor import PositionMonitor
from tradebot.engine.risk import classify, evaluate_admission
from tradebot.engine.scanner import OpportunityScanner
from tradebot.engine.trades import Trade, TradeStatus, TradeStore
from tradebot.schemas.engine_config import EngineConfig, EngineConfigUpdate
from tradebot.services.providers import ProviderError

logger = logging.getLogger(__name__)

SCAN_JOB_ID = "scan"
MONITOR_JOB_ID = "monitor"

Listener = Callable[[str, Any], None]


class RunToken:
    """Revocable marker for one start()..stop() run."""

    def __init__(self):
        self._revoked = False

    @property
    def active(self) -> bool:
        return not self._revoked

    def revoke(self):
        self._revoked = True


class BotController:
    def __init__(
        self,
        store: TradeStore,
        config_store: ConfigStore,
        scanner: OpportunityScanner,
        dispatcher: ExecutionDispatcher,
        monitor: PositionMonitor,
        chains: list[str],
        journal: TradeJournal | None = None,
        scheduler: AsyncIOScheduler | None = None,
        mode: str = "paper",
    ):
        self.store = store
        self.config_store = config_store
        self.scanner = scanner
        self.dispatcher = dispatcher
        self.monitor = monitor
        self.chains = list(chains)
        self.journal = journal
        self.scheduler = scheduler or AsyncIOScheduler()
        self.mode = mode

        self.cycle_count = 0
        self.error_count = 0
        self.last_tick_at: datetime | None = None
        self._token: RunToken | None = None
        self._tick_lock = asyncio.Lock()
        self._listeners: list[Listener] = []

        self.store.add_listener(self._on_trade_event)

    # -- lifecycle ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._token is not None and self._token.active

    def start(self) -> dict:
        """Schedule the scan and monitor jobs. No-op if already running."""
        if self.running:
            logger.info("Bot already running")
            return self.get_status()

        if not self.scheduler.running:
            self.scheduler.start()

        token = RunToken()
        self._token = token
        config = self.config_store.get()
        self._add_job(SCAN_JOB_ID, self._scan_job, config.trade_interval_sec, token)
        self._add_job(MONITOR_JOB_ID, self._monitor_job, config.monitor_interval_sec, token)

        logger.info(
            f"Bot started ({self.mode}) on {', '.join(self.chains)}: "
            f"scan every {config.trade_interval_sec}s, monitor every {config.monitor_interval_sec}s"
        )
        status = self.get_status()
        self._notify("bot_status", status)
        return status

    def stop(self) -> dict:
        """Revoke the current run and remove its jobs. No-op if already stopped."""
        if not self.running:
            logger.info("Bot already stopped")
            return self.get_status()

        self._token.revoke()
        self._token = None
        for job_id in (SCAN_JOB_ID, MONITOR_JOB_ID):
            if self.scheduler.get_job(job_id):
                self.scheduler.remove_job(job_id)

        logger.info("Bot stopped")
        status = self.get_status()
        self._notify("bot_status", status)
        return status

    def close(self):
        """Stop and shut the scheduler down. Called on application shutdown."""
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _add_job(self, job_id: str, func, interval_sec: float, token: RunToken):
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=interval_sec),
            args=[token],
            id=job_id,
            name=job_id.capitalize(),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(1, int(interval_sec)),
        )

    def _reschedule(self, job_id: str, interval_sec: float):
        if self.scheduler.get_job(job_id):
            self.scheduler.reschedule_job(job_id, trigger=IntervalTrigger(seconds=interval_sec))
            logger.info(f"Rescheduled {job_id} to every {interval_sec}s")

    # -- queries -----------------------------------------------------------

    def get_status(self) -> dict:
        return {
            "running": self.running,
            "mode": self.mode,
            "chains": list(self.chains),
            "trade_count": self.store.open_count(),
            "last_tick_at": self.last_tick_at,
            "cycle_count": self.cycle_count,
            "error_count": self.error_count,
        }

    def get_config(self) -> EngineConfig:
        return self.config_store.get()

    def update_config(self, partial: dict[str, Any] | EngineConfigUpdate) -> EngineConfig:
        """Apply a partial config update. Raises ConfigValidationError, leaving config unchanged."""
        previous = self.config_store.get()
        config = self.config_store.update(partial)

        if self.running:
            if config.trade_interval_sec != previous.trade_interval_sec:
                self._reschedule(SCAN_JOB_ID, config.trade_interval_sec)
            if config.monitor_interval_sec != previous.monitor_interval_sec:
                self._reschedule(MONITOR_JOB_ID, config.monitor_interval_sec)

        self._notify("config_update", config)
        return config

    def get_active_trades(self) -> list[Trade]:
        """All non-terminal trades, oldest first."""
        return self.store.open_trades()

    def get_trade_history(self, limit: int | None = None) -> list[Trade]:
        """Terminal trades, most recent first."""
        return self.store.history(limit)

    def get_stats(self) -> dict:
        history = self.store.history()
        closed = [t for t in history if t.status in (TradeStatus.CLOSED_PROFIT, TradeStatus.CLOSED_LOSS)]
        failed = sum(1 for t in history if t.status == TradeStatus.FAILED)
        profits = np.array([t.realised_profit_usd or 0.0 for t in closed], dtype=float)
        pnl_pcts = np.array([t.profit_loss_percentage or 0.0 for t in closed], dtype=float)
        wins = int(np.sum(profits > 0)) if len(profits) else 0

        return {
            "total_trades": len(history) + self.store.open_count(),
            "active_trades": self.store.open_count(),
            "completed_trades": len(closed),
            "failed_trades": failed,
            "total_profit_usd": round(float(profits.sum()), 4) if len(profits) else 0.0,
            "win_rate": round(wins / len(closed) * 100, 2) if closed else 0.0,
            "profit_per_trade_usd": round(float(profits.mean()), 4) if len(profits) else 0.0,
            "avg_pnl_pct": round(float(pnl_pcts.mean()), 4) if len(pnl_pcts) else 0.0,
            "cycle_count": self.cycle_count,
            "error_count": self.error_count,
        }

    def get_scheduler_status(self) -> dict:
        jobs = self.scheduler.get_jobs() if self.scheduler.running else []
        return {
            "running": self.scheduler.running,
            "job_count": len(jobs),
            "jobs": [
                {
                    "id": j.id,
                    "name": j.name,
                    "next_run": str(j.next_run_time) if j.next_run_time else None,
                    "trigger": str(j.trigger),
                }
                for j in jobs
            ],
        }

    # -- events ------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register for (event, payload) callbacks. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, payload: Any):
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.error(f"Listener failed on {event}: {e}", exc_info=True)

    def _on_trade_event(self, event: str, trade: Trade):
        if event == "trade_closed" and self.journal is not None:
            self.journal.record_trade(trade)
        self._notify(event, trade)

    # -- ticks -------------------------------------------------------------

    async def _scan_job(self, token: RunToken):
        if token.active:
            await self.run_tick(token)

    async def _monitor_job(self, token: RunToken):
        if not token.active:
            return
        try:
            await self.monitor.tick()
        except Exception as e:
            self.error_count += 1
            logger.error(f"Monitor tick failed: {e}", exc_info=True)

    async def run_tick(self, token: RunToken | None = None) -> dict:
        """Run one scan tick over every chain. Skips if a tick is already running."""
        if self._tick_lock.locked():
            logger.warning("Skipping overlapping scan tick")
            return {"skipped": True}

        token = token or self._token or RunToken()
        async with self._tick_lock:
            self.cycle_count += 1
            cycle = self.cycle_count
            self._notify("cycle_start", {"cycle": cycle, "chains": list(self.chains)})
            started = time.monotonic()

            semaphore = asyncio.Semaphore(self.config_store.get().scan_concurrency)
            results = await asyncio.gather(
                *(self._scan_chain(chain, token, semaphore) for chain in self.chains),
                return_exceptions=True,
            )

            summary = {"cycle": cycle, "chains": {}, "opportunities": 0, "admitted": 0, "errors": 0}
            for chain, result in zip(self.chains, results):
                if isinstance(result, BaseException):
                    self.error_count += 1
                    summary["errors"] += 1
                    summary["chains"][chain] = {"status": "error", "error": str(result)}
                    if isinstance(result, ProviderError):
                        logger.warning(f"[{chain}] Discovery failed, chain skipped this tick: {result}")
                    else:
                        logger.error(f"[{chain}] Scan failed: {result}", exc_info=result)
                    if self.journal is not None:
                        self.journal.log_cycle(chain, "error", message=str(result))
                    self._notify("cycle_error", {"cycle": cycle, "chain": chain, "error": str(result)})
                    continue
                summary["chains"][chain] = result
                summary["opportunities"] += result["opportunities"]
                summary["admitted"] += result["admitted"]

            self.last_tick_at = datetime.now(timezone.utc)
            summary["duration_ms"] = int((time.monotonic() - started) * 1000)
            logger.info(
                f"Cycle {cycle}: {summary['opportunities']} opportunities, "
                f"{summary['admitted']} admitted, {summary['errors']} chain errors "
                f"in {summary['duration_ms']}ms"
            )
            self._notify("cycle_complete", summary)
            return summary

    async def _scan_chain(self, chain: str, token: RunToken, semaphore: asyncio.Semaphore) -> dict:
        async with semaphore:
            if not token.active:
                return {"status": "skipped", "opportunities": 0, "admitted": 0}

            started = time.monotonic()
            found = 0
            admitted = 0
            async for opportunity in self.scanner.scan(chain, should_continue=lambda: token.active):
                found += 1
                config = self.config_store.get()
                assessment = classify(opportunity)
                check = evaluate_admission(opportunity, assessment, config)
                if not check.should_admit:
                    logger.debug(
                        f"[{chain}] Skipped {opportunity.symbol} ({assessment.tier.value}, "
                        f"${opportunity.estimated_profit_usd:.2f}): {check.skip_reason}"
                    )
                    continue

                trade = self.store.admit(
                    opportunity,
                    assessment,
                    amount_in=config.amount_in_native,
                    max_concurrent=config.max_concurrent_trades,
                )
                if trade is None:
                    continue
                admitted += 1
                # Admitted trades are always driven to ACTIVE or FAILED, even after stop()
                await self.dispatcher.execute(trade.id)

            duration_ms = int((time.monotonic() - started) * 1000)
            if self.journal is not None:
                self.journal.log_cycle(chain, "success", found, admitted, duration_ms)
            return {"status": "success", "opportunities": found, "admitted": admitted}

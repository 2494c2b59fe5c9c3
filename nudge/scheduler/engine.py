"""
TickDriver — the background asyncio tasks that run delivery passes.

Design:
- Two independent timers, each driven by its own trigger (UTC cron):
    hourly        daily check-ins, then follow-ups
    quarter-hour  follow-ups, then active check-ins
- Every fire spawns the pass as its own task.  Passes may overlap if one
  runs long; the dispatcher's in-flight guard and idempotent mark_sent
  keep overlapping passes from double-sending.
- A pass that fails is logged and abandoned; the next tick starts from a
  fresh read of the stores.
- stop() halts both timers and waits for passes already running, so no
  pass is left half-applied.
- No state of its own beyond the tasks: what is due lives in the stores.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from nudge.core.types import QueueKind, as_utc, utcnow
from nudge.scheduler.dispatcher import Dispatcher, PassStats
from nudge.scheduler.triggers import Trigger, make_trigger
from nudge.store.factory import Stores

logger = logging.getLogger(__name__)


class PassKind(str, Enum):
    HOURLY = "hourly"
    QUARTER_HOUR = "quarter-hour"


@dataclass
class PassReport:
    """Outcome of one pass: per-queue stats, or the error that aborted it."""

    kind: PassKind
    started_at: datetime
    stats: list[PassStats] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def get(self, queue: str) -> PassStats | None:
        return next((s for s in self.stats if s.queue == queue), None)


class TickDriver:
    """
    Usage:
        driver = TickDriver(stores, dispatcher)
        await driver.start()
        ...
        await driver.stop()

        # or run a single pass by hand
        report = await driver.run_quarter_hour_pass()
    """

    def __init__(
        self,
        stores: Stores,
        dispatcher: Dispatcher,
        hourly_trigger: Trigger | None = None,
        quarter_hour_trigger: Trigger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._stores = stores
        self._dispatcher = dispatcher
        self._triggers = {
            PassKind.HOURLY: hourly_trigger
            or make_trigger({"type": "cron", "expression": "0 * * * *"}),
            PassKind.QUARTER_HOUR: quarter_hour_trigger
            or make_trigger({"type": "cron", "expression": "*/15 * * * *"}),
        }
        self._clock = clock
        self._running = False
        self._timers: list[asyncio.Task] = []
        self._passes: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start both timers."""
        if self._running:
            return
        self._running = True
        for kind, trigger in self._triggers.items():
            self._timers.append(
                asyncio.create_task(self._timer(kind, trigger), name=f"nudge-{kind.value}")
            )
        logger.info("TickDriver started")
        for kind, trigger in self._triggers.items():
            logger.info(f"   - {kind.value} pass: {trigger.description}")

    async def stop(self) -> None:
        """Stop both timers and let passes already in progress finish."""
        self._running = False
        for task in self._timers:
            if not task.done():
                task.cancel()
        for task in self._timers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timers = []
        if self._passes:
            logger.info(f"Waiting for {len(self._passes)} running pass(es) to finish")
            await asyncio.gather(*self._passes, return_exceptions=True)
        logger.info("TickDriver stopped")

    # ── Passes ────────────────────────────────────────────────────────────────

    async def run_hourly_pass(self, now: datetime | None = None) -> PassReport:
        """Daily check-ins for the current UTC hour, then due follow-ups."""
        return await self._run_pass(PassKind.HOURLY, now)

    async def run_quarter_hour_pass(self, now: datetime | None = None) -> PassReport:
        """Due follow-ups, then due active check-ins."""
        return await self._run_pass(PassKind.QUARTER_HOUR, now)

    async def _run_pass(self, kind: PassKind, now: datetime | None) -> PassReport:
        now = as_utc(now) if now else self._clock()
        report = PassReport(kind=kind, started_at=now)
        logger.info(f"{kind.value.capitalize()} check at {now.isoformat()}")
        try:
            if kind is PassKind.HOURLY:
                targets = await self._stores.subscriptions.list_due_for_daily_checkin(
                    now.hour, now.date()
                )
                logger.info(f"Checking for daily check-ins at UTC hour {now.hour}")
                report.stats.append(await self._dispatcher.dispatch_daily_checkins(targets))
                report.stats.append(await self._dispatcher.dispatch_due(QueueKind.FOLLOWUP, now))
            else:
                report.stats.append(await self._dispatcher.dispatch_due(QueueKind.FOLLOWUP, now))
                report.stats.append(
                    await self._dispatcher.dispatch_due(QueueKind.ACTIVE_CHECKIN, now)
                )
        except Exception as e:
            logger.exception(f"Error in {kind.value} pass")
            report.error = str(e)
        return report

    # ── Internal timers ───────────────────────────────────────────────────────

    async def _timer(self, kind: PassKind, trigger: Trigger) -> None:
        while self._running:
            fire_at = trigger.next_fire_time(time.time())
            await asyncio.sleep(max(0.0, fire_at - time.time()))
            if not self._running:
                break
            task = asyncio.create_task(self._run_pass(kind, None), name=f"nudge-{kind.value}-pass")
            self._passes.add(task)
            task.add_done_callback(self._passes.discard)

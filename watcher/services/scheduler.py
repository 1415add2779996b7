"""
Monitor Scheduler - tick-based dispatch with a global concurrency ceiling.

Each tick:
1. Load all active monitors from the store
2. Select the ones that are due (see watcher.utils.scheduling)
3. Dispatch each after a random jitter (0 to WATCHER_MAX_JITTER_SECONDS)

At most WATCHER_MAX_CONCURRENT_CHECKS checks run at once across every
scheduler instance (see CheckSlotPool). A check whose slot is not
available when its jitter expires, or whose monitor is still being checked
by an earlier tick, is dropped; its last_checked has not moved, so a later
tick picks it up again.

Usage:
    scheduler = MonitorScheduler()
    await scheduler.run_forever()

    # Or a single tick, waiting for everything it dispatched
    result = await scheduler.tick()
    await scheduler.wait_for_dispatched()
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils import timezone

from watcher.utils.scheduling import is_monitor_due

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Summary of one scheduler tick."""

    active: int = 0
    due: int = 0
    dispatched: List[str] = field(default_factory=list)


class MonitorScheduler:
    """
    Periodic driver for monitor checks.

    The concurrency ceiling is a fixed pool of cache-backed slots shared
    with every other scheduler. Slots are claimed without waiting: a full
    pool drops the check.
    """

    def __init__(
        self,
        store=None,
        engine=None,
        slots=None,
        max_concurrent: Optional[int] = None,
        max_jitter_seconds: Optional[float] = None,
        tick_seconds: Optional[float] = None,
        sleep: Callable = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable = timezone.now,
    ):
        """
        Initialize the scheduler.

        Args:
            store: MonitorStore (default DjangoMonitorStore)
            engine: CheckEngine (default bound to store)
            slots: CheckSlotPool (default sized max_concurrent)
            max_concurrent: Concurrency ceiling (default from settings)
            max_jitter_seconds: Upper bound of the dispatch jitter (default from settings)
            tick_seconds: Interval between ticks (default from settings)
            sleep: Awaitable sleep, injectable for tests
            rng: Random source for jitter
            clock: Current-time callable
        """
        if store is None:
            from watcher.store import DjangoMonitorStore

            store = DjangoMonitorStore()
        if engine is None:
            from .check_engine import CheckEngine

            engine = CheckEngine(store=store)

        self.store = store
        self.engine = engine
        self.max_concurrent = max_concurrent or getattr(
            settings, "WATCHER_MAX_CONCURRENT_CHECKS", 10
        )
        self.max_jitter_seconds = (
            max_jitter_seconds
            if max_jitter_seconds is not None
            else getattr(settings, "WATCHER_MAX_JITTER_SECONDS", 30)
        )
        self.tick_seconds = tick_seconds or getattr(settings, "WATCHER_TICK_SECONDS", 60)
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.clock = clock

        if slots is None:
            from .check_slots import CheckSlotPool

            slots = CheckSlotPool(size=self.max_concurrent)
        self.slots = slots
        self._in_flight = 0
        self._tasks: Set[asyncio.Task] = set()
        self.dropped = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def tick(self) -> TickResult:
        """
        Run one scheduling pass.

        Returns:
            TickResult with the ids of dispatched monitors
        """
        result = TickResult()
        try:
            monitors = await sync_to_async(self.store.get_all_active_monitors)()
        except Exception as e:
            logger.error(f"Scheduler failed to load monitors: {e}")
            return result

        now = self.clock()
        result.active = len(monitors)

        for monitor in monitors:
            if not is_monitor_due(monitor, now):
                continue
            result.due += 1
            jitter = self.rng.uniform(0, self.max_jitter_seconds)
            task = asyncio.create_task(self._dispatch(monitor, jitter))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            result.dispatched.append(str(monitor.id))

        if result.due:
            logger.info(f"Scheduler tick: {result.due} of {result.active} active monitors due")
        return result

    async def _dispatch(self, monitor, jitter: float) -> None:
        await self.sleep(jitter)

        slot = await self.slots.acquire(monitor.id)
        if slot is None:
            self.dropped += 1
            return

        self._in_flight += 1
        try:
            outcome = await self.engine.run_check(monitor)
            logger.debug(
                f"Monitor {monitor.id} checked: status={outcome.status} changed={outcome.changed}"
            )
        except Exception as e:
            logger.error(f"Check dispatch failed for monitor {monitor.id}: {e}")
        finally:
            self._in_flight -= 1
            await self.slots.release(slot, monitor.id)

    async def wait_for_dispatched(self) -> None:
        """Wait until every check dispatched so far has finished."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run_forever(self, max_ticks: Optional[int] = None) -> None:
        """
        Tick every tick_seconds until cancelled.

        Args:
            max_ticks: Stop after this many ticks (None runs indefinitely)
        """
        logger.info(
            f"Scheduler started: tick={self.tick_seconds}s, "
            f"max_concurrent={self.max_concurrent}, jitter<={self.max_jitter_seconds}s"
        )
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            await self.tick()
            ticks += 1
            if max_ticks is None or ticks < max_ticks:
                await self.sleep(self.tick_seconds)
        await self.wait_for_dispatched()

"""
Tests for due-time calculation and the tick-based monitor scheduler.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fakes import FakeStore, make_snapshot
from watcher.services.check_slots import CheckSlotPool
from watcher.services.scheduler import MonitorScheduler
from watcher.utils.scheduling import get_interval, is_monitor_due

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)


class TestIsMonitorDue:
    """Tests for is_monitor_due."""

    def test_never_checked_is_due(self):
        assert is_monitor_due(make_snapshot(last_checked=None), NOW) is True

    def test_hourly_not_due_after_30_minutes(self):
        monitor = make_snapshot(frequency="hourly", last_checked=NOW - timedelta(minutes=30))
        assert is_monitor_due(monitor, NOW) is False

    def test_hourly_due_after_61_minutes(self):
        monitor = make_snapshot(frequency="hourly", last_checked=NOW - timedelta(minutes=61))
        assert is_monitor_due(monitor, NOW) is True

    def test_hourly_due_exactly_at_interval(self):
        monitor = make_snapshot(frequency="hourly", last_checked=NOW - timedelta(hours=1))
        assert is_monitor_due(monitor, NOW) is True

    def test_daily(self):
        recent = make_snapshot(frequency="daily", last_checked=NOW - timedelta(hours=23))
        stale = make_snapshot(frequency="daily", last_checked=NOW - timedelta(hours=25))

        assert is_monitor_due(recent, NOW) is False
        assert is_monitor_due(stale, NOW) is True

    def test_unknown_frequency_treated_as_daily(self):
        assert get_interval("weekly") == timedelta(hours=24)


class RecordingSleep:
    """Awaitable sleep replacement that returns immediately."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def make_engine(side_effect=None):
    engine = MagicMock()
    engine.run_check = AsyncMock(side_effect=side_effect)
    return engine


class GatedEngine:
    """Engine whose checks block until released, tracking concurrency."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.checked = []
        self.release = asyncio.Event()

    async def run_check(self, monitor):
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.checked.append(monitor.id)
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        return MagicMock()


async def settle(condition, attempts=500):
    """Yield to the loop until condition() holds."""
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


class TestCheckSlotPool:
    """Tests for the cache-backed slot pool."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self):
        pool = CheckSlotPool(size=2)
        monitor = make_snapshot()

        slot = await pool.acquire(monitor.id)
        assert slot is not None

        await pool.release(slot, monitor.id)
        assert await pool.acquire(monitor.id) == slot

    @pytest.mark.asyncio
    async def test_monitor_in_flight_is_refused(self):
        pool = CheckSlotPool(size=2)
        monitor = make_snapshot()

        assert await pool.acquire(monitor.id) is not None
        assert await pool.acquire(monitor.id) is None

    @pytest.mark.asyncio
    async def test_full_pool_frees_the_in_flight_key(self):
        pool = CheckSlotPool(size=1)
        first, second = make_snapshot(), make_snapshot()

        slot = await pool.acquire(first.id)
        assert await pool.acquire(second.id) is None

        await pool.release(slot, first.id)
        assert await pool.acquire(second.id) is not None


class TestMonitorScheduler:
    """Tests for MonitorScheduler."""

    def _scheduler(self, monitors, engine, **kwargs):
        kwargs.setdefault("max_concurrent", 10)
        kwargs.setdefault("max_jitter_seconds", 0)
        kwargs.setdefault("tick_seconds", 60)
        kwargs.setdefault("sleep", RecordingSleep())
        return MonitorScheduler(
            store=FakeStore(monitors),
            engine=engine,
            clock=lambda: NOW,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_tick_dispatches_only_due_monitors(self):
        due = make_snapshot(frequency="hourly", last_checked=NOW - timedelta(hours=2))
        fresh = make_snapshot(frequency="hourly", last_checked=NOW - timedelta(minutes=5))
        paused = make_snapshot(active=False)
        engine = make_engine()
        scheduler = self._scheduler([due, fresh, paused], engine)

        result = await scheduler.tick()
        await scheduler.wait_for_dispatched()

        assert result.active == 2
        assert result.due == 1
        assert result.dispatched == [str(due.id)]
        engine.run_check.assert_awaited_once_with(due)

    @pytest.mark.asyncio
    async def test_jitter_within_bounds(self):
        monitors = [make_snapshot() for _ in range(20)]
        sleep = RecordingSleep()
        scheduler = self._scheduler(
            monitors,
            make_engine(),
            max_jitter_seconds=30,
            sleep=sleep,
            rng=random.Random(7),
        )

        await scheduler.tick()
        await scheduler.wait_for_dispatched()

        assert len(sleep.calls) == 20
        assert all(0 <= delay <= 30 for delay in sleep.calls)
        assert len(set(sleep.calls)) > 1

    @pytest.mark.asyncio
    async def test_check_dropped_when_ceiling_reached(self):
        engine = GatedEngine()
        scheduler = self._scheduler([make_snapshot(), make_snapshot()], engine, max_concurrent=1)

        result = await scheduler.tick()
        await settle(lambda: scheduler.dropped == 1 and engine.active == 1)

        assert result.due == 2
        assert scheduler.in_flight == 1

        engine.release.set()
        await scheduler.wait_for_dispatched()

        assert scheduler.in_flight == 0
        assert len(engine.checked) == 1

    @pytest.mark.asyncio
    async def test_overlapping_ticks_share_the_ceiling(self):
        monitors = [make_snapshot() for _ in range(10)]
        engine = GatedEngine()
        first = self._scheduler(monitors, engine, max_concurrent=10)
        second = self._scheduler(monitors, engine, max_concurrent=10)

        await asyncio.gather(first.tick(), second.tick())
        await settle(lambda: first.dropped + second.dropped == 10 and engine.active == 10)

        engine.release.set()
        await asyncio.gather(first.wait_for_dispatched(), second.wait_for_dispatched())

        # Every monitor ran exactly once; the later tick skipped the in-flight ones
        assert engine.peak == 10
        assert sorted(engine.checked) == sorted(m.id for m in monitors)

    @pytest.mark.asyncio
    async def test_ceiling_holds_across_schedulers(self):
        engine = GatedEngine()
        first = self._scheduler([make_snapshot() for _ in range(5)], engine, max_concurrent=3)
        second = self._scheduler([make_snapshot() for _ in range(5)], engine, max_concurrent=3)

        await asyncio.gather(first.tick(), second.tick())
        await settle(lambda: first.dropped + second.dropped == 7 and engine.active == 3)

        assert engine.active == 3

        engine.release.set()
        await asyncio.gather(first.wait_for_dispatched(), second.wait_for_dispatched())

        assert engine.peak == 3

    @pytest.mark.asyncio
    async def test_engine_error_releases_slot(self):
        monitor = make_snapshot()
        engine = make_engine(side_effect=RuntimeError("boom"))
        scheduler = self._scheduler([monitor], engine, max_concurrent=1)

        await scheduler.tick()
        await scheduler.wait_for_dispatched()

        assert scheduler.in_flight == 0
        assert scheduler.dropped == 0
        assert await scheduler.slots.acquire(monitor.id) is not None

    @pytest.mark.asyncio
    async def test_store_error_skips_tick(self):
        store = MagicMock()
        store.get_all_active_monitors.side_effect = RuntimeError("db down")
        engine = make_engine()
        scheduler = MonitorScheduler(store=store, engine=engine, sleep=RecordingSleep())

        result = await scheduler.tick()

        assert result.active == 0
        assert result.dispatched == []
        engine.run_check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_forever_stops_after_max_ticks(self):
        sleep = RecordingSleep()
        monitor = make_snapshot(last_checked=None)
        engine = make_engine()
        scheduler = self._scheduler([monitor], engine, sleep=sleep, tick_seconds=60)

        await scheduler.run_forever(max_ticks=3)

        # Engine is a mock, last_checked never moves, so every tick re-dispatches
        assert engine.run_check.await_count == 3
        assert sleep.calls.count(60) == 2

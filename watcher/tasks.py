"""
Celery tasks for the page watcher.

- check_due_monitors: Periodic tick (every minute via Celery Beat) that
  dispatches due monitors and waits for the dispatched checks
- run_monitor_check: Check a single monitor on demand
- prune_monitor_metrics: Daily cleanup of old per-stage metrics
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task
from django.conf import settings

from watcher.monitoring.error_logger import LogContext, log_error

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run a coroutine to completion on a fresh event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@shared_task(name="watcher.tasks.check_due_monitors")
def check_due_monitors() -> Dict[str, Any]:
    """
    Run one scheduler tick.

    Returns:
        Dict with active/due counts and dispatched monitor ids
    """
    from watcher.services.scheduler import MonitorScheduler

    async def _tick():
        scheduler = MonitorScheduler()
        result = await scheduler.tick()
        await scheduler.wait_for_dispatched()
        return result, scheduler.dropped

    result, dropped = _run_async(_tick())

    return {
        "active": result.active,
        "due": result.due,
        "dispatched": result.dispatched,
        "dropped": dropped,
    }


@shared_task(name="watcher.tasks.run_monitor_check")
def run_monitor_check(monitor_id: str) -> Dict[str, Any]:
    """
    Check one monitor immediately, regardless of its schedule.

    Args:
        monitor_id: UUID of the Monitor

    Returns:
        Dict with the check outcome, or an error if the monitor does not exist
    """
    from watcher.services.check_engine import CheckEngine
    from watcher.store import DjangoMonitorStore

    store = DjangoMonitorStore()
    monitor = store.get_monitor(monitor_id)
    if monitor is None:
        logger.warning(f"Monitor {monitor_id} not found")
        return {"monitor_id": str(monitor_id), "error": "Monitor not found"}

    outcome = _run_async(CheckEngine(store=store).run_check(monitor))

    return {
        "monitor_id": str(monitor_id),
        "status": str(outcome.status),
        "changed": outcome.changed,
        "current_value": outcome.current_value,
        "previous_value": outcome.previous_value,
        "error": outcome.error,
    }


@shared_task(name="watcher.tasks.prune_monitor_metrics")
def prune_monitor_metrics() -> Dict[str, Any]:
    """
    Delete metrics older than WATCHER_METRICS_RETENTION_DAYS.

    Failures are logged, never raised, so beat keeps running.
    """
    from watcher.monitoring.metrics import prune_metrics

    retention_days = getattr(settings, "WATCHER_METRICS_RETENTION_DAYS", 90)
    try:
        deleted = prune_metrics(retention_days)
    except Exception as e:
        log_error(
            "scheduler",
            "Metrics pruning failed",
            error=e,
            context=LogContext(extra={"retention_days": retention_days}),
        )
        return {"deleted": 0, "error": str(e)}

    return {"deleted": deleted}

"""
Per-stage check metrics.

Each stage of a check (static fetch, static retry, renderer, renderer retry,
auto-heal) records one MonitorMetric row. Metrics are best-effort: a failed
write is logged at debug level and never affects the check. A daily job
prunes rows older than WATCHER_METRICS_RETENTION_DAYS.
"""

import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90


def record_metric(
    monitor_id,
    stage: str,
    duration_ms: int,
    status: str,
    selector_count: Optional[int] = None,
    blocked: bool = False,
    block_reason: Optional[str] = None,
) -> None:
    """
    Record a metric for one check stage.

    Args:
        monitor_id: Monitor the check ran for
        stage: CheckStage value
        duration_ms: Stage wall time in milliseconds
        status: Stage outcome (ok, selector_missing, blocked, error, ...)
        selector_count: Elements matched by the selector, when known
        blocked: Whether the stage classified the page as blocked
        block_reason: Block detector reason
    """
    from watcher.models import MonitorMetric

    try:
        MonitorMetric.objects.create(
            monitor_id=monitor_id,
            stage=stage,
            duration_ms=max(int(duration_ms), 0),
            status=status[:40],
            selector_count=selector_count,
            blocked=blocked,
            block_reason=(block_reason or None) and block_reason[:100],
        )
    except Exception as e:
        logger.debug(f"[Metrics] Failed to record metric: {e}")


def prune_metrics(retention_days: Optional[int] = None) -> int:
    """
    Delete metrics older than the retention window.

    Returns:
        Number of rows deleted
    """
    from watcher.models import MonitorMetric

    retention_days = retention_days or getattr(
        settings, "WATCHER_METRICS_RETENTION_DAYS", DEFAULT_RETENTION_DAYS
    )
    cutoff = timezone.now() - timedelta(days=retention_days)

    deleted, _ = MonitorMetric.objects.filter(created_at__lt=cutoff).delete()
    logger.info(f"[Metrics] Pruned {deleted} metrics older than {retention_days} days")
    return deleted

"""
Consecutive failure tracking and auto-pause for monitors.

- Counter lives on the Monitor row and is updated atomically by the store
- Pause thresholds depend on the owner's plan tier (free < pro < power)
- Reaching the threshold deactivates the monitor and raises a Sentry alert
- Counter is reset on a successful check

Usage:
    from watcher.monitoring import FailureTracker

    tracker = FailureTracker(store=store)

    # On failure
    outcome = tracker.record_failure(monitor, status="selector_missing",
                                     error="Selector not found", tier="pro")
    if outcome.paused:
        ...

    # On success, with the change record written in the same transaction
    tracker.record_success(monitor.id, change=("$12", "$10"),
                           current_value="$10", last_status="ok")
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_THRESHOLDS = {
    "free": 3,
    "pro": 5,
    "power": 10,
}


def get_pause_threshold(tier: Optional[str], thresholds: Optional[Dict[str, int]] = None) -> int:
    """
    Consecutive failures after which a monitor on this tier is paused.

    Unknown tiers use the free tier threshold.
    """
    thresholds = thresholds or getattr(
        settings, "WATCHER_PAUSE_THRESHOLDS", DEFAULT_PAUSE_THRESHOLDS
    )
    return thresholds.get(tier or "free", thresholds.get("free", DEFAULT_PAUSE_THRESHOLDS["free"]))


def trigger_pause_alert(monitor, failure_count: int, last_error: Optional[str]) -> None:
    """
    Alert when a monitor is auto-paused.

    Args:
        monitor: MonitorSnapshot that was paused
        failure_count: Consecutive failure count that triggered the pause
        last_error: Last error message (already truncated)
    """
    from .sentry_integration import capture_alert

    message = (
        f"Monitor {monitor.name or monitor.id} auto-paused after "
        f"{failure_count} consecutive failures"
    )

    logger.warning(message)

    capture_alert(
        message=message,
        level="warning",
        alert_type="auto_pause",
        monitor_id=str(monitor.id),
        monitor_name=monitor.name,
        extra_data={
            "failure_count": failure_count,
            "last_error": last_error,
        },
    )


@dataclass
class FailureOutcome:
    """Result of recording a failure."""

    failure_count: int
    threshold: int
    paused: bool


class FailureTracker:
    """
    Tracks consecutive check failures per monitor through the store.

    Pauses a monitor when it reaches its tier's threshold.
    """

    def __init__(self, store=None, thresholds: Optional[Dict[str, int]] = None):
        """
        Initialize the failure tracker.

        Args:
            store: MonitorStore (default DjangoMonitorStore)
            thresholds: Tier -> pause threshold mapping (default from settings)
        """
        if store is None:
            from watcher.store import DjangoMonitorStore

            store = DjangoMonitorStore()
        self.store = store
        self.thresholds = thresholds

    def threshold_for(self, tier: Optional[str]) -> int:
        return get_pause_threshold(tier, self.thresholds)

    def record_failure(
        self,
        monitor,
        status: str,
        error: Optional[str],
        tier: Optional[str],
    ) -> FailureOutcome:
        """
        Record a failed check.

        Increments the counter in the same update that writes status/error.
        If the store reports no count, falls back to the snapshot's count + 1
        and applies the pause explicitly.

        Args:
            monitor: MonitorSnapshot
            status: Final check status
            error: Error message (already truncated)
            tier: Owner's plan tier

        Returns:
            FailureOutcome with the new count and whether this failure paused the monitor
        """
        threshold = self.threshold_for(tier)
        pause_reason = f"Auto-paused after {threshold} consecutive failures"
        checked_at = timezone.now()

        update = self.store.record_check_failure(
            monitor.id,
            status=status,
            error=error,
            checked_at=checked_at,
            pause_threshold=threshold,
            pause_reason=pause_reason,
        )

        if update is not None and update.consecutive_failures is not None:
            failure_count = update.consecutive_failures
            paused = update.paused
        else:
            failure_count = (monitor.consecutive_failures or 0) + 1
            paused = monitor.active and failure_count >= threshold
            logger.warning(
                f"Atomic failure update returned no count for monitor {monitor.id}, "
                f"using snapshot count {failure_count}"
            )
            fields = {
                "consecutive_failures": failure_count,
                "last_status": status,
                "last_error": error,
                "last_checked": checked_at,
            }
            if paused:
                fields.update(active=False, pause_reason=pause_reason)
            self.store.update_monitor(monitor.id, **fields)

        logger.debug(
            f"Recorded failure for monitor {monitor.id}: "
            f"count={failure_count}, threshold={threshold}"
        )

        if paused:
            trigger_pause_alert(monitor, failure_count, error)

        return FailureOutcome(failure_count=failure_count, threshold=threshold, paused=paused)

    def record_success(
        self,
        monitor_id,
        change: Optional[Tuple[Optional[str], str]] = None,
        **fields,
    ) -> None:
        """
        Record a successful check.

        Resets the counter and clears the last error alongside the given
        fields. When change is (old_value, new_value), the change record is
        written together with the new value or not at all.
        """
        self.store.record_check_success(
            monitor_id,
            change=change,
            consecutive_failures=0,
            last_error=None,
            **fields,
        )
        logger.debug(f"Reset failure counter for monitor {monitor_id}")

    def record_infrastructure_failure(self, monitor_id, status: str, error: Optional[str]) -> None:
        """Write status/error without touching the failure counter."""
        self.store.update_monitor(
            monitor_id,
            last_status=status,
            last_error=error,
            last_checked=timezone.now(),
        )

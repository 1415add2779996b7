"""
Due-time calculation for monitors.

A monitor is due when it has never been checked, or when the time since
its last check reaches its frequency interval.
"""

from datetime import datetime, timedelta
from typing import Optional

from django.utils import timezone

SCHEDULE_INTERVALS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(hours=24),
}


def get_interval(frequency: str) -> timedelta:
    """Interval for a frequency; unknown frequencies are treated as daily."""
    return SCHEDULE_INTERVALS.get(frequency, SCHEDULE_INTERVALS["daily"])


def is_monitor_due(monitor, now: Optional[datetime] = None) -> bool:
    """
    Check whether a monitor should be checked on this tick.

    Args:
        monitor: MonitorSnapshot (or anything with frequency and last_checked)
        now: Reference time (default timezone.now())

    Returns:
        True if never checked or the interval has elapsed
    """
    if monitor.last_checked is None:
        return True

    now = now or timezone.now()
    return now - monitor.last_checked >= get_interval(monitor.frequency)

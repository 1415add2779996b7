"""
Check slots - the global concurrency ceiling for monitor checks.

Slots live in the Django cache (Redis in production), so the ceiling holds
across overlapping scheduler ticks, Celery workers and hosts. A check must
hold two keys while it runs:
- its monitor's in-flight key, so a monitor still being checked is not
  dispatched again by a later tick
- one of WATCHER_MAX_CONCURRENT_CHECKS slot keys

Both are taken with cache.add (atomic set-if-absent) and never waited for:
a check that cannot take them is dropped. Keys expire after
WATCHER_CHECK_SLOT_TTL seconds so a crashed worker cannot leak a slot.

Usage:
    pool = CheckSlotPool()
    slot = await pool.acquire(monitor.id)
    if slot is not None:
        try:
            ...
        finally:
            await pool.release(slot, monitor.id)
"""

import logging
from typing import Optional

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

SLOT_KEY = "watcher:check-slot:{index}"
IN_FLIGHT_KEY = "watcher:check-in-flight:{monitor_id}"


class CheckSlotPool:
    """
    Fixed pool of check slots shared through the cache.
    """

    DEFAULT_TTL_SECONDS = 10 * 60

    def __init__(self, size: Optional[int] = None, ttl: Optional[int] = None):
        """
        Initialize the slot pool.

        Args:
            size: Number of slots (default WATCHER_MAX_CONCURRENT_CHECKS)
            ttl: Key lifetime in seconds; must outlast the slowest check
        """
        self.size = size or getattr(settings, "WATCHER_MAX_CONCURRENT_CHECKS", 10)
        self.ttl = ttl or getattr(settings, "WATCHER_CHECK_SLOT_TTL", self.DEFAULT_TTL_SECONDS)

    async def acquire(self, monitor_id) -> Optional[str]:
        """
        Claim the monitor's in-flight key and a free slot.

        Returns:
            The slot key, or None when the monitor is already being checked
            or every slot is taken
        """
        in_flight_key = IN_FLIGHT_KEY.format(monitor_id=monitor_id)
        if not await cache.aadd(in_flight_key, True, timeout=self.ttl):
            logger.info(f"Monitor {monitor_id} is still being checked, skipping")
            return None

        for index in range(self.size):
            slot_key = SLOT_KEY.format(index=index)
            if await cache.aadd(slot_key, str(monitor_id), timeout=self.ttl):
                return slot_key

        await cache.adelete(in_flight_key)
        logger.info(
            f"Concurrency ceiling ({self.size}) reached, skipping monitor {monitor_id} this tick"
        )
        return None

    async def release(self, slot_key: str, monitor_id) -> None:
        await cache.adelete(slot_key)
        await cache.adelete(IN_FLIGHT_KEY.format(monitor_id=monitor_id))

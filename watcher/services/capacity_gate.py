"""
Rendering capacity gate - tracks rendering-backend usage and enforces caps.

Every rendering session is recorded as a RendererUsage row. Before a check
opens a session it asks the gate whether the owner may render:
- Free tier: never
- System-wide monthly cap across all users
- Per-user monthly cap by tier

System usage alerts fire at 80% and 95% of the system cap, at most once per
threshold every 6 hours (cooldown kept in the Django cache).

Usage:
    gate = RendererCapacityGate()
    decision = gate.can_use_renderer(user_id, tier)
    if decision.allowed:
        ...
        gate.record_renderer_usage(user_id, monitor_id, duration_ms, success=True)
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

logger = logging.getLogger(__name__)


@dataclass
class CapacityDecision:
    """Answer to "may this user render now?"."""

    allowed: bool
    reason: Optional[str] = None


class RendererCapacityGate:
    """
    Monthly rendering caps per user tier and for the whole system.
    """

    # Default monthly caps
    DEFAULT_USER_CAPS = {
        "free": 0,
        "pro": 200,
        "power": 500,
    }
    DEFAULT_SYSTEM_CAP = 1000

    # System usage alert thresholds (fraction of system cap)
    ALERT_THRESHOLDS = (0.80, 0.95)
    ALERT_COOLDOWN_SECONDS = 6 * 60 * 60

    def __init__(
        self,
        user_caps: Optional[Dict[str, int]] = None,
        system_cap: Optional[int] = None,
    ):
        """
        Initialize the capacity gate.

        Args:
            user_caps: Tier -> monthly cap (default from settings)
            system_cap: System-wide monthly cap (default from settings)
        """
        self.user_caps = user_caps or getattr(
            settings, "WATCHER_RENDERER_MONTHLY_CAPS", self.DEFAULT_USER_CAPS
        )
        self.system_cap = system_cap if system_cap is not None else getattr(
            settings, "WATCHER_RENDERER_SYSTEM_CAP", self.DEFAULT_SYSTEM_CAP
        )

    def _month_start(self):
        """Start of the current month (UTC)."""
        return timezone.now().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def get_system_usage(self) -> int:
        from watcher.models import RendererUsage

        return RendererUsage.objects.filter(created_at__gte=self._month_start()).count()

    def get_user_usage(self, user_id: str) -> int:
        from watcher.models import RendererUsage

        return RendererUsage.objects.filter(
            user_id=user_id,
            created_at__gte=self._month_start(),
        ).count()

    def can_use_renderer(self, user_id: str, tier: Optional[str]) -> CapacityDecision:
        """
        Check if the user may open a rendering session now.

        Args:
            user_id: Monitor owner
            tier: Owner's plan tier

        Returns:
            CapacityDecision with reason free_tier, system_cap or user_cap when refused
        """
        tier = tier or "free"
        user_cap = self.user_caps.get(tier, 0)

        if tier == "free" or user_cap <= 0:
            return CapacityDecision(allowed=False, reason="free_tier")

        if self.get_system_usage() >= self.system_cap:
            logger.warning(f"Renderer system cap reached ({self.system_cap}/month)")
            return CapacityDecision(allowed=False, reason="system_cap")

        if self.get_user_usage(user_id) >= user_cap:
            logger.info(f"Renderer cap reached for user {user_id} ({user_cap}/month)")
            return CapacityDecision(allowed=False, reason="user_cap")

        return CapacityDecision(allowed=True)

    def record_renderer_usage(
        self,
        user_id: str,
        monitor_id,
        duration_ms: int,
        success: bool,
    ) -> None:
        """
        Record one rendering session.

        Args:
            user_id: Monitor owner
            monitor_id: Monitor the session was for
            duration_ms: Session wall time
            success: Whether the session produced a usable result
        """
        from watcher.models import RendererUsage

        RendererUsage.objects.create(
            user_id=user_id,
            monitor_id=monitor_id,
            duration_ms=max(int(duration_ms), 0),
            success=success,
        )
        logger.debug(
            f"Recorded renderer usage for user {user_id}: {duration_ms}ms, success={success}"
        )

        self.check_usage_alerts()

    def check_usage_alerts(self) -> None:
        """
        Alert when system usage crosses an alert threshold.

        Only the highest crossed threshold alerts, once per cooldown window.
        """
        from watcher.monitoring.sentry_integration import capture_alert

        if self.system_cap <= 0:
            return

        usage = self.get_system_usage()
        ratio = usage / self.system_cap

        crossed = [t for t in self.ALERT_THRESHOLDS if ratio >= t]
        if not crossed:
            return

        threshold = max(crossed)
        cooldown_key = f"watcher:renderer-alert:{int(threshold * 100)}"
        if not cache.add(cooldown_key, True, timeout=self.ALERT_COOLDOWN_SECONDS):
            return

        message = (
            f"Renderer usage at {ratio * 100:.1f}% of system cap "
            f"({usage}/{self.system_cap} this month)"
        )
        logger.warning(message)
        capture_alert(
            message=message,
            level="error" if threshold >= 0.95 else "warning",
            alert_type="renderer_capacity",
            extra_data={
                "usage": usage,
                "system_cap": self.system_cap,
                "threshold": threshold,
            },
        )

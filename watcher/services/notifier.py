"""
Outbound notifications for monitor changes and auto-pauses.

Notifier is the capability the check engine calls; EmailNotifier delivers
through Django's mail framework. Free-tier monitors get at most one change
email per 24 hours (tracked in the Django cache).
"""

import abc
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.cache import cache
from django.core.mail import send_mail

logger = logging.getLogger(__name__)

FREE_TIER_CHANGE_EMAIL_INTERVAL = 24 * 60 * 60


@dataclass
class NotificationResult:
    """Delivery outcome."""

    success: bool
    error: Optional[str] = None


class Notifier(abc.ABC):
    """Notification capability used by the check engine."""

    @abc.abstractmethod
    def send_change_notification(
        self, monitor, old_value: Optional[str], new_value: str
    ) -> NotificationResult:
        """Tell the owner that the monitored value changed."""

    @abc.abstractmethod
    def send_pause_notification(
        self, monitor, failure_count: int, last_error: Optional[str]
    ) -> NotificationResult:
        """Tell the owner that the monitor was auto-paused."""


class EmailNotifier(Notifier):
    """Sends notifications by email to the address on the owner's plan."""

    def __init__(self, store=None):
        if store is None:
            from watcher.store import DjangoMonitorStore

            store = DjangoMonitorStore()
        self.store = store
        self.from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None)
        self.dashboard_url = getattr(settings, "WATCHER_DASHBOARD_URL", "")

    def _recipient(self, user_id: str) -> Optional[str]:
        from watcher.models import UserPlan

        plan = UserPlan.objects.filter(user_id=user_id).first()
        return plan.email if plan and plan.email else None

    def _send(self, recipient: str, subject: str, body: str) -> NotificationResult:
        try:
            send_mail(subject, body, self.from_email, [recipient], fail_silently=False)
        except Exception as e:
            logger.warning(f"Failed to send '{subject}' to {recipient}: {e}")
            return NotificationResult(success=False, error=str(e))
        return NotificationResult(success=True)

    def send_change_notification(
        self, monitor, old_value: Optional[str], new_value: str
    ) -> NotificationResult:
        recipient = self._recipient(monitor.user_id)
        if not recipient:
            return NotificationResult(success=False, error="no_recipient")

        rate_key = None
        if self.store.get_user_tier(monitor.user_id) == "free":
            rate_key = f"watcher:change-email:{monitor.id}"
            if not cache.add(rate_key, True, timeout=FREE_TIER_CHANGE_EMAIL_INTERVAL):
                logger.info(f"Change email for monitor {monitor.id} rate limited (free tier)")
                return NotificationResult(success=False, error="rate_limited")

        subject = f"Change detected: {monitor.name}"
        body = (
            f"The value watched by \"{monitor.name}\" changed.\n\n"
            f"Old value: {old_value if old_value is not None else '(none)'}\n"
            f"New value: {new_value}\n\n"
            f"Page: {monitor.url}\n"
            f"Dashboard: {self.dashboard_url}\n"
        )
        result = self._send(recipient, subject, body)
        if not result.success and rate_key:
            cache.delete(rate_key)
        return result

    def send_pause_notification(
        self, monitor, failure_count: int, last_error: Optional[str]
    ) -> NotificationResult:
        recipient = self._recipient(monitor.user_id)
        if not recipient:
            return NotificationResult(success=False, error="no_recipient")

        subject = f"Monitor paused: {monitor.name}"
        body = (
            f"\"{monitor.name}\" failed {failure_count} checks in a row and has been paused.\n\n"
            f"Last error: {last_error or 'unknown'}\n"
            f"Page: {monitor.url}\n\n"
            f"Fix the selector or URL and resume the monitor from the dashboard: "
            f"{self.dashboard_url}\n"
        )
        return self._send(recipient, subject, body)

"""
Monitor store: the engine's only view of persisted monitor state.

The check engine reads immutable MonitorSnapshot objects and writes
partial updates. MonitorStore is the capability interface; DjangoMonitorStore
implements it on the ORM. All methods are synchronous; async callers wrap
them with asgiref's sync_to_async.

Usage:
    store = DjangoMonitorStore()
    for monitor in store.get_all_active_monitors():
        ...
    store.update_monitor(monitor.id, last_status="ok", consecutive_failures=0)
"""

import abc
import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from django.db import transaction
from django.db.models import BooleanField, Case, F, TextField, Value, When
from django.utils import timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorSnapshot:
    """Point-in-time copy of a Monitor row."""

    id: UUID
    user_id: str
    name: str
    url: str
    selector: str
    frequency: str = "daily"
    current_value: Optional[str] = None
    last_checked: Optional[datetime] = None
    last_changed: Optional[datetime] = None
    last_status: str = "ok"
    last_error: Optional[str] = None
    active: bool = True
    email_enabled: bool = True
    consecutive_failures: int = 0
    pause_reason: Optional[str] = None

    @classmethod
    def from_model(cls, monitor) -> "MonitorSnapshot":
        return cls(**{f.name: getattr(monitor, f.name) for f in fields(cls)})


@dataclass
class FailureUpdate:
    """What the atomic failure update reported back."""

    consecutive_failures: Optional[int]
    active: Optional[bool] = None
    paused: bool = False


class MonitorStore(abc.ABC):
    """Capability interface for monitor persistence."""

    @abc.abstractmethod
    def get_monitor(self, monitor_id) -> Optional[MonitorSnapshot]:
        """Fetch one monitor, or None if it no longer exists."""

    @abc.abstractmethod
    def update_monitor(self, monitor_id, **fields) -> None:
        """Write a partial update."""

    @abc.abstractmethod
    def add_change_record(self, monitor_id, old_value: Optional[str], new_value: str) -> None:
        """Append a change record."""

    @abc.abstractmethod
    def record_check_success(
        self,
        monitor_id,
        change: Optional[Tuple[Optional[str], str]] = None,
        **fields,
    ) -> None:
        """
        Write a successful check's fields and, when change is given as
        (old_value, new_value), its change record. Either both land or neither.
        """

    @abc.abstractmethod
    def get_all_active_monitors(self) -> List[MonitorSnapshot]:
        """All monitors with active=True."""

    @abc.abstractmethod
    def get_user_tier(self, user_id: str) -> str:
        """Plan tier for a user; "free" when unknown."""

    @abc.abstractmethod
    def record_check_failure(
        self,
        monitor_id,
        *,
        status: str,
        error: Optional[str],
        checked_at: datetime,
        pause_threshold: int,
        pause_reason: str,
    ) -> Optional[FailureUpdate]:
        """
        Atomically increment consecutive_failures and write status/error.

        The same update sets active=False and pause_reason once the new count
        reaches pause_threshold. Returns None when the row was not found.
        """


class DjangoMonitorStore(MonitorStore):
    """MonitorStore backed by the watcher models."""

    def get_monitor(self, monitor_id) -> Optional[MonitorSnapshot]:
        from watcher.models import Monitor

        monitor = Monitor.objects.filter(pk=monitor_id).first()
        return MonitorSnapshot.from_model(monitor) if monitor else None

    def update_monitor(self, monitor_id, **fields) -> None:
        from watcher.models import Monitor

        if not fields:
            return
        updated = Monitor.objects.filter(pk=monitor_id).update(**fields)
        if not updated:
            logger.warning(f"Monitor {monitor_id} not found for update")

    def add_change_record(self, monitor_id, old_value: Optional[str], new_value: str) -> None:
        from watcher.models import MonitorChange

        MonitorChange.objects.create(
            monitor_id=monitor_id,
            old_value=old_value,
            new_value=new_value,
            detected_at=timezone.now(),
        )

    def record_check_success(
        self,
        monitor_id,
        change: Optional[Tuple[Optional[str], str]] = None,
        **fields,
    ) -> None:
        with transaction.atomic():
            self.update_monitor(monitor_id, **fields)
            if change is not None:
                old_value, new_value = change
                self.add_change_record(monitor_id, old_value, new_value)

    def get_all_active_monitors(self) -> List[MonitorSnapshot]:
        from watcher.models import Monitor

        return [
            MonitorSnapshot.from_model(monitor)
            for monitor in Monitor.objects.filter(active=True).order_by("last_checked")
        ]

    def get_user_tier(self, user_id: str) -> str:
        from watcher.models import UserPlan, UserTier

        plan = UserPlan.objects.filter(user_id=user_id).first()
        if plan is None or plan.tier not in UserTier.values:
            return UserTier.FREE
        return plan.tier

    def record_check_failure(
        self,
        monitor_id,
        *,
        status: str,
        error: Optional[str],
        checked_at: datetime,
        pause_threshold: int,
        pause_reason: str,
    ) -> Optional[FailureUpdate]:
        from watcher.models import Monitor

        queryset = Monitor.objects.filter(pk=monitor_id)

        with transaction.atomic():
            before = (
                queryset.select_for_update()
                .values("active", "consecutive_failures")
                .first()
            )
            if before is None:
                return None

            # Conditions see the pre-increment value within a single UPDATE
            reaches_threshold = When(
                consecutive_failures__gte=pause_threshold - 1, active=True, then=Value(False)
            )
            queryset.update(
                consecutive_failures=F("consecutive_failures") + 1,
                last_status=status,
                last_error=error,
                last_checked=checked_at,
                active=Case(
                    reaches_threshold,
                    default=F("active"),
                    output_field=BooleanField(),
                ),
                pause_reason=Case(
                    When(
                        consecutive_failures__gte=pause_threshold - 1,
                        active=True,
                        then=Value(pause_reason),
                    ),
                    default=F("pause_reason"),
                    output_field=TextField(),
                ),
            )

            after = queryset.values("active", "consecutive_failures").first()

        if after is None:
            return None

        return FailureUpdate(
            consecutive_failures=after["consecutive_failures"],
            active=after["active"],
            paused=bool(before["active"]) and not after["active"],
        )

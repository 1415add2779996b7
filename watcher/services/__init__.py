"""Check engine, scheduler and their collaborators."""

from .capacity_gate import CapacityDecision, RendererCapacityGate
from .check_engine import CheckEngine, CheckOutcome
from .notifier import EmailNotifier, NotificationResult, Notifier
from .scheduler import MonitorScheduler, TickResult

__all__ = [
    "CapacityDecision",
    "RendererCapacityGate",
    "CheckEngine",
    "CheckOutcome",
    "EmailNotifier",
    "NotificationResult",
    "Notifier",
    "MonitorScheduler",
    "TickResult",
]

"""
Monitoring and alerting for the check engine.

- Sentry error tracking with check context
- Consecutive failure tracking and tier-aware auto-pause
- Persistent, de-duplicated error log
- Per-stage check metrics

Thresholds (configurable):
- Auto-pause: free 3, pro 5, power 10 consecutive failures
- Metrics retention: 90 days
"""

from .sentry_integration import add_check_breadcrumb, capture_alert, capture_check_error
from .failure_tracker import FailureOutcome, FailureTracker, get_pause_threshold
from .error_logger import LogContext, log_error, log_info, log_warning
from .metrics import prune_metrics, record_metric

__all__ = [
    "add_check_breadcrumb",
    "capture_alert",
    "capture_check_error",
    "FailureOutcome",
    "FailureTracker",
    "get_pause_threshold",
    "LogContext",
    "log_error",
    "log_info",
    "log_warning",
    "prune_metrics",
    "record_metric",
]

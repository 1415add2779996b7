"""
Sentry error tracking for monitor checks.

- Breadcrumbs for each check stage (monitor, URL, stage)
- Filters sensitive data (tokens, cookies, credentials)
- Captures unexpected exceptions with check context
- Alerts for auto-pauses and rendering capacity thresholds

Sentry is initialised in settings/base.py only when SENTRY_DSN is set;
without it every call here is a cheap no-op inside the SDK.

Usage:
    from watcher.monitoring import add_check_breadcrumb, capture_check_error

    add_check_breadcrumb(monitor.name, monitor.url, stage="static")
    try:
        ...
    except Exception as e:
        capture_check_error(error=e, monitor=monitor, stage="renderer")
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

# Sensitive fields to filter from Sentry events
SENSITIVE_FIELDS = {
    "cookies",
    "cookie",
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "auth",
    "password",
    "secret",
    "token",
    "x-api-key",
}


def _filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Filter sensitive data from a dictionary.

    Replaces values for keys that match sensitive field names.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        Dictionary with sensitive values replaced
    """
    if not isinstance(data, dict):
        return data

    filtered = {}
    for key, value in data.items():
        key_lower = str(key).lower()

        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            filtered[key] = "[Filtered]"
        elif isinstance(value, dict):
            filtered[key] = _filter_sensitive_data(value)
        else:
            filtered[key] = value

    return filtered


def add_check_breadcrumb(
    monitor_name: str,
    url: str,
    stage: str,
    message: str = "Check stage",
    level: str = "info",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Add a breadcrumb to Sentry for check context.

    Args:
        monitor_name: Name of the Monitor
        url: URL being checked
        stage: Pipeline stage (static, renderer, auto_heal, ...)
        message: Description of the operation
        level: Log level (info, warning, error)
        extra_data: Additional context data
    """
    breadcrumb_data = {
        "monitor": monitor_name,
        "url": url,
        "stage": stage,
    }

    if extra_data:
        breadcrumb_data.update(_filter_sensitive_data(extra_data))

    try:
        sentry_sdk.add_breadcrumb(
            category="check",
            message=message,
            level=level,
            data=breadcrumb_data,
        )
    except Exception as e:
        logger.warning(f"Failed to add Sentry breadcrumb: {e}")


def capture_check_error(
    error: BaseException,
    monitor=None,
    url: Optional[str] = None,
    stage: Optional[str] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture an unexpected check error to Sentry with full context.

    Args:
        error: The exception that occurred
        monitor: Monitor snapshot (optional)
        url: URL where error occurred
        stage: Pipeline stage
        extra_context: Additional context (will be filtered for sensitive data)
    """
    monitor_name = monitor.name if monitor else "Unknown"
    url = url or (monitor.url if monitor else None)

    add_check_breadcrumb(
        monitor_name=monitor_name,
        url=url or "Unknown",
        stage=stage or "unknown",
        message=f"Error: {type(error).__name__}",
        level="error",
        extra_data=extra_context,
    )

    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("watcher.monitor", monitor_name)
            scope.set_tag("watcher.stage", stage or "unknown")

            if monitor is not None:
                scope.set_extra("monitor_id", str(monitor.id))
            if url:
                scope.set_extra("check_url", url)
            if extra_context:
                scope.set_extra("check_context", _filter_sensitive_data(extra_context))

            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")


def capture_alert(
    message: str,
    level: str = "warning",
    alert_type: str = "threshold_breach",
    monitor_id: Optional[str] = None,
    monitor_name: Optional[str] = None,
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture an alert message to Sentry.

    Used for auto-pauses and rendering capacity alerts.

    Args:
        message: Alert message
        level: Severity level (warning, error)
        alert_type: Tag value identifying the alert kind
        monitor_id: Monitor ID
        monitor_name: Monitor name
        extra_data: Additional alert data
    """
    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("alert.type", alert_type)

            if monitor_name:
                scope.set_tag("watcher.monitor", monitor_name)
            if monitor_id:
                scope.set_extra("monitor_id", monitor_id)
            if extra_data:
                scope.set_extra("alert_data", _filter_sensitive_data(extra_data))

            sentry_sdk.capture_message(message, level=level)

    except Exception as e:
        logger.warning(f"Failed to capture alert to Sentry: {e}")

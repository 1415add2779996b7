"""
Persistent operational logging for the check engine.

- Writes ErrorLog rows for errors, warnings and notable info events
- Redacts sensitive context keys and secret-looking values
- Truncates long messages
- De-duplicates: an unresolved entry with the same level, source and
  message bumps occurrence_count instead of adding a row

Every entry is also emitted through the standard logger. Failures to
persist are logged and swallowed; logging never breaks a check.

Usage:
    from watcher.monitoring import LogContext, log_error, log_info

    log_info(
        "scraper",
        f'"{monitor.name}" auto-healed selector',
        context=LogContext(monitor_id=monitor.id, extra={"oldSelector": old}),
    )
"""

import logging
import re
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID

from django.db import transaction
from django.db.models import F
from django.utils import timezone

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
TRUNCATION_SUFFIX = "...[truncated]"
REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "password",
    "passwd",
    "token",
    "secret",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "session",
    "credential",
    "private_key",
)

SENSITIVE_VALUE_PATTERNS = [
    (re.compile(r"bearer\s+[a-z0-9._~+/=-]+", re.IGNORECASE), f"Bearer {REDACTED}"),
    (
        re.compile(
            r"\b(postgres(?:ql)?|mysql|redis|rediss|mongodb(?:\+srv)?|amqp)://\S+",
            re.IGNORECASE,
        ),
        rf"\1://{REDACTED}",
    ),
    (
        re.compile(r"\b(token|key|secret|password|apikey|api_key)=([^&\s]+)", re.IGNORECASE),
        rf"\1={REDACTED}",
    ),
    (re.compile(r"\b(?:sk|pk|rk)_(?:live|test)_[a-z0-9]{10,}", re.IGNORECASE), REDACTED),
    (re.compile(r"\b[a-f0-9]{32,}\b", re.IGNORECASE), REDACTED),
]


@dataclass
class LogContext:
    """Structured context attached to a log entry."""

    monitor_id: Optional[UUID] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def sanitize_value(value: str) -> str:
    """Replace secret-looking substrings in a string."""
    for pattern, replacement in SENSITIVE_VALUE_PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def sanitize_context(data: Any) -> Any:
    """Recursively redact sensitive keys and values."""
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_context(value)
        return sanitized
    if isinstance(data, (list, tuple)):
        return [sanitize_context(item) for item in data]
    if isinstance(data, str):
        return sanitize_value(data)
    if isinstance(data, UUID):
        return str(data)
    return data


def truncate_message(message: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    if len(message) <= max_length:
        return message
    return message[:max_length] + TRUNCATION_SUFFIX


def write_log_entry(
    level: str,
    source: str,
    message: str,
    error: Optional[BaseException] = None,
    context: Optional[LogContext] = None,
):
    """
    Persist a log entry, de-duplicating against unresolved entries.

    Args:
        level: "error", "warning" or "info"
        source: Subsystem name (scraper, scheduler, renderer, ...)
        message: Human readable message
        error: Exception to record type and stack trace for
        context: Structured context

    Returns:
        ErrorLog instance, or None if persisting failed
    """
    from watcher.models import ErrorLog

    context = context or LogContext()
    clean_message = truncate_message(sanitize_value(message))
    clean_context = sanitize_context(context.extra)
    error_type = type(error).__name__ if error is not None else None
    stack_trace = ""
    if error is not None and error.__traceback__ is not None:
        stack_trace = truncate_message(
            sanitize_value("".join(traceback.format_exception(error))), 5000
        )

    log_method = getattr(logger, level, logger.info)
    log_method(f"[{source}] {clean_message}")

    try:
        with transaction.atomic():
            existing = (
                ErrorLog.objects.select_for_update()
                .filter(level=level, source=source, message=clean_message, resolved=False)
                .first()
            )
            now = timezone.now()
            if existing is not None:
                ErrorLog.objects.filter(pk=existing.pk).update(
                    occurrence_count=F("occurrence_count") + 1,
                    last_occurrence=now,
                    context=clean_context,
                )
                existing.refresh_from_db()
                return existing

            return ErrorLog.objects.create(
                level=level,
                source=source,
                message=clean_message,
                error_type=error_type,
                stack_trace=stack_trace,
                monitor_id=context.monitor_id,
                context=clean_context,
                first_occurrence=now,
                last_occurrence=now,
            )

    except Exception as e:
        logger.warning(f"Failed to persist {level} log entry from {source}: {e}")
        return None


def log_error(
    source: str,
    message: str,
    error: Optional[BaseException] = None,
    context: Optional[LogContext] = None,
):
    return write_log_entry("error", source, message, error=error, context=context)


def log_warning(
    source: str,
    message: str,
    error: Optional[BaseException] = None,
    context: Optional[LogContext] = None,
):
    return write_log_entry("warning", source, message, error=error, context=context)


def log_info(source: str, message: str, context: Optional[LogContext] = None):
    return write_log_entry("info", source, message, context=context)

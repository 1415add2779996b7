"""
Django models for the Page Watcher.

Models: Monitor, MonitorChange, UserPlan, RendererUsage, MonitorMetric, ErrorLog

A Monitor is a (URL, selector) pair whose extracted value is checked on a
schedule. The check engine only reads Monitor snapshots and writes partial
updates through watcher.store; everything else here is history and telemetry.
"""

import uuid

from django.db import models
from django.utils import timezone


# Stored lastError is always cut to this many characters
LAST_ERROR_MAX_LENGTH = 200


class CheckStatus(models.TextChoices):
    """Final status of a single monitor check."""

    OK = "ok", "OK"
    BLOCKED = "blocked", "Blocked"
    SELECTOR_MISSING = "selector_missing", "Selector Missing"
    ERROR = "error", "Error"


class MonitorFrequency(models.TextChoices):
    """How often a monitor is checked."""

    HOURLY = "hourly", "Hourly"
    DAILY = "daily", "Daily"


class UserTier(models.TextChoices):
    """Billing plan tiers."""

    FREE = "free", "Free"
    PRO = "pro", "Pro"
    POWER = "power", "Power"


class CheckStage(models.TextChoices):
    """Pipeline stages that emit metrics."""

    STATIC = "static", "Static Fetch"
    STATIC_RETRY = "static_retry", "Static Retry"
    RENDERER = "renderer", "Renderer"
    RENDERER_RETRY = "renderer_retry", "Renderer Retry"
    AUTO_HEAL = "auto_heal", "Auto-Heal"


class LogLevel(models.TextChoices):
    """Severity of a persisted log entry."""

    ERROR = "error", "Error"
    WARNING = "warning", "Warning"
    INFO = "info", "Info"


class Monitor(models.Model):
    """
    A watched page and the selector of the value tracked on it.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=255, db_index=True)
    name = models.CharField(max_length=200)
    url = models.URLField(max_length=2000)
    selector = models.CharField(max_length=500)
    frequency = models.CharField(
        max_length=10,
        choices=MonitorFrequency.choices,
        default=MonitorFrequency.DAILY,
    )

    # Check state
    current_value = models.TextField(null=True, blank=True)
    last_checked = models.DateTimeField(null=True, blank=True)
    last_changed = models.DateTimeField(null=True, blank=True)
    last_status = models.CharField(
        max_length=20,
        choices=CheckStatus.choices,
        default=CheckStatus.OK,
    )
    last_error = models.CharField(
        max_length=LAST_ERROR_MAX_LENGTH,
        null=True,
        blank=True,
    )

    # Lifecycle
    active = models.BooleanField(default=True)
    email_enabled = models.BooleanField(default=True)
    consecutive_failures = models.IntegerField(default=0)
    pause_reason = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "monitors"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["active", "last_checked"], name="monitors_active_1f0c2a_idx"),
            models.Index(fields=["user_id"], name="monitors_user_id_7d4e19_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.url})"


class MonitorChange(models.Model):
    """
    Append-only record of an accepted value change.
    """

    id = models.BigAutoField(primary_key=True)
    monitor = models.ForeignKey(
        Monitor,
        on_delete=models.CASCADE,
        related_name="changes",
    )
    old_value = models.TextField(null=True, blank=True)
    new_value = models.TextField()
    detected_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "monitor_changes"
        ordering = ["-detected_at"]
        indexes = [
            models.Index(
                fields=["monitor", "detected_at"], name="monitor_cha_monitor_5e2d7f_idx"
            ),
        ]

    def __str__(self):
        return f"{self.monitor_id}: {self.old_value!r} -> {self.new_value!r}"


class UserPlan(models.Model):
    """Maps an external user identifier to a plan tier."""

    user_id = models.CharField(max_length=255, primary_key=True)
    tier = models.CharField(
        max_length=10,
        choices=UserTier.choices,
        default=UserTier.FREE,
    )
    email = models.EmailField(blank=True, default="")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "user_plans"

    def __str__(self):
        return f"{self.user_id}: {self.tier}"


class RendererUsage(models.Model):
    """
    One rendering-backend session opened on behalf of a monitor.

    Used for per-user and system-wide monthly capacity accounting.
    """

    id = models.BigAutoField(primary_key=True)
    user_id = models.CharField(max_length=255)
    monitor = models.ForeignKey(
        Monitor,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="renderer_usage",
    )
    duration_ms = models.IntegerField(default=0)
    success = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "renderer_usage"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["user_id", "created_at"], name="renderer_us_user_id_c4a810_idx"
            ),
            models.Index(fields=["created_at"], name="renderer_us_created_9f12bd_idx"),
        ]

    def __str__(self):
        return f"{self.user_id}: {self.duration_ms}ms ({'ok' if self.success else 'failed'})"


class MonitorMetric(models.Model):
    """
    Telemetry for one stage of one check.
    """

    id = models.BigAutoField(primary_key=True)
    monitor = models.ForeignKey(
        Monitor,
        on_delete=models.CASCADE,
        related_name="metrics",
    )
    stage = models.CharField(max_length=20, choices=CheckStage.choices)
    duration_ms = models.IntegerField()
    status = models.CharField(max_length=40)
    selector_count = models.IntegerField(null=True, blank=True)
    blocked = models.BooleanField(default=False)
    block_reason = models.CharField(max_length=100, null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "monitor_metrics"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["monitor", "created_at"], name="monitor_met_monitor_2a7c3e_idx"
            ),
            models.Index(fields=["created_at"], name="monitor_met_created_6b0d94_idx"),
        ]

    def __str__(self):
        return f"{self.monitor_id} {self.stage}: {self.status} ({self.duration_ms}ms)"


class ErrorLog(models.Model):
    """
    Persistent, de-duplicated operational log entry.

    Repeated unresolved entries with the same level, source and message
    bump occurrence_count instead of adding rows.
    """

    id = models.BigAutoField(primary_key=True)
    level = models.CharField(max_length=10, choices=LogLevel.choices)
    source = models.CharField(max_length=50)
    error_type = models.CharField(max_length=100, null=True, blank=True)
    message = models.TextField()
    stack_trace = models.TextField(blank=True, default="")
    monitor_id = models.UUIDField(null=True, blank=True)
    context = models.JSONField(default=dict, blank=True)

    occurrence_count = models.IntegerField(default=1)
    first_occurrence = models.DateTimeField(default=timezone.now)
    last_occurrence = models.DateTimeField(default=timezone.now)
    resolved = models.BooleanField(default=False)

    class Meta:
        db_table = "error_logs"
        ordering = ["-last_occurrence"]
        indexes = [
            models.Index(
                fields=["level", "source", "resolved"], name="error_logs_level_3b9e51_idx"
            ),
            models.Index(
                fields=["last_occurrence"], name="error_logs_last_oc_a61c08_idx"
            ),
        ]

    def __str__(self):
        return f"[{self.level}] {self.source}: {self.message[:50]} (x{self.occurrence_count})"

"""
Django admin configuration for page watcher models.

Monitors can be resumed or checked on demand; error logs can be resolved.
"""

from django import forms
from django.contrib import admin
from django.utils.html import format_html

from watcher.extraction import validate_css_selector
from watcher.models import (
    ErrorLog,
    Monitor,
    MonitorChange,
    MonitorMetric,
    RendererUsage,
    UserPlan,
)

STATUS_COLORS = {
    "ok": "#28a745",
    "blocked": "#fd7e14",
    "selector_missing": "#ffc107",
    "error": "#dc3545",
}


class MonitorChangeInline(admin.TabularInline):
    model = MonitorChange
    extra = 0
    readonly_fields = ["old_value", "new_value", "detected_at"]
    ordering = ["-detected_at"]

    def has_add_permission(self, request, obj=None):
        return False


class MonitorAdminForm(forms.ModelForm):
    class Meta:
        model = Monitor
        fields = "__all__"

    def clean_selector(self):
        """Reject selectors the extractor could not compile."""
        selector = self.cleaned_data["selector"]
        valid, error = validate_css_selector(selector)
        if not valid:
            raise forms.ValidationError(error)
        return selector


@admin.register(Monitor)
class MonitorAdmin(admin.ModelAdmin):
    form = MonitorAdminForm
    list_display = [
        "name",
        "user_id",
        "frequency",
        "current_value",
        "status_badge",
        "consecutive_failures",
        "active",
        "last_checked",
    ]
    list_filter = ["active", "frequency", "last_status"]
    search_fields = ["name", "url", "user_id"]
    readonly_fields = [
        "id",
        "current_value",
        "last_checked",
        "last_changed",
        "last_status",
        "last_error",
        "consecutive_failures",
        "pause_reason",
        "created_at",
    ]
    inlines = [MonitorChangeInline]
    actions = ["resume_monitors", "check_now"]

    def status_badge(self, obj):
        """Display last status as colored badge."""
        color = STATUS_COLORS.get(obj.last_status, "#6c757d")
        return format_html(
            '<span style="background-color: {}; color: white; '
            'padding: 2px 8px; border-radius: 4px;">{}</span>',
            color, obj.last_status.replace("_", " ").title()
        )
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "last_status"

    @admin.action(description="Resume selected monitors")
    def resume_monitors(self, request, queryset):
        """Reactivate monitors and clear their failure streak."""
        count = queryset.update(active=True, consecutive_failures=0, pause_reason=None)
        self.message_user(request, f"Resumed {count} monitor(s).")

    @admin.action(description="Check now")
    def check_now(self, request, queryset):
        """Queue an immediate check for each selected monitor."""
        from watcher.tasks import run_monitor_check

        for monitor in queryset:
            run_monitor_check.delay(str(monitor.id))
        self.message_user(request, f"Queued {queryset.count()} check(s).")


@admin.register(UserPlan)
class UserPlanAdmin(admin.ModelAdmin):
    list_display = ["user_id", "tier", "email", "updated_at"]
    list_filter = ["tier"]
    search_fields = ["user_id", "email"]


@admin.register(RendererUsage)
class RendererUsageAdmin(admin.ModelAdmin):
    list_display = ["created_at", "user_id", "monitor", "duration_ms", "success"]
    list_filter = ["success", ("created_at", admin.DateFieldListFilter)]
    search_fields = ["user_id"]
    ordering = ["-created_at"]


@admin.register(MonitorMetric)
class MonitorMetricAdmin(admin.ModelAdmin):
    list_display = ["created_at", "monitor", "stage", "status", "duration_ms", "blocked"]
    list_filter = ["stage", "status", "blocked"]
    ordering = ["-created_at"]


@admin.register(ErrorLog)
class ErrorLogAdmin(admin.ModelAdmin):
    list_display = [
        "last_occurrence",
        "level",
        "source",
        "message",
        "occurrence_count",
        "resolved",
    ]
    list_filter = ["level", "source", "resolved"]
    search_fields = ["message", "error_type"]
    readonly_fields = [
        "level",
        "source",
        "error_type",
        "message",
        "stack_trace",
        "monitor_id",
        "context",
        "occurrence_count",
        "first_occurrence",
        "last_occurrence",
    ]
    ordering = ["-last_occurrence"]
    actions = ["mark_resolved"]

    @admin.action(description="Mark selected entries as resolved")
    def mark_resolved(self, request, queryset):
        count = queryset.update(resolved=True)
        self.message_user(request, f"Marked {count} entr(ies) as resolved.")

    def has_add_permission(self, request):
        return False

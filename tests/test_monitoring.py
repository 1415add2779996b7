"""
Tests for the monitoring layer and the Django store.

- Sentry breadcrumbs, exception capture and alerts
- Failure tracking and tier-aware auto-pause
- Atomic failure counter updates in DjangoMonitorStore
- Persistent error log (de-duplication, redaction, truncation)
- Per-stage metrics and pruning
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from tests.fakes import FakeStore, make_snapshot
from watcher.monitoring.error_logger import LogContext, log_error, log_info, write_log_entry
from watcher.monitoring.failure_tracker import FailureTracker, get_pause_threshold
from watcher.monitoring.metrics import prune_metrics, record_metric
from watcher.store import DjangoMonitorStore


@pytest.fixture
def mock_sentry():
    """Patch the SDK module used by sentry_integration."""
    with patch("watcher.monitoring.sentry_integration.sentry_sdk") as sentry:
        scope = MagicMock()
        sentry.new_scope.return_value.__enter__.return_value = scope
        sentry.scope = scope
        yield sentry


class TestSentryIntegration:
    """Tests for Sentry capture with check context."""

    def test_capture_check_error_adds_breadcrumb_and_context(self, mock_sentry):
        from watcher.monitoring.sentry_integration import capture_check_error

        snapshot = make_snapshot()
        error = ValueError("unexpected markup")

        capture_check_error(error=error, monitor=snapshot, stage="static")

        breadcrumb = mock_sentry.add_breadcrumb.call_args[1]
        assert breadcrumb["category"] == "check"
        assert breadcrumb["level"] == "error"
        assert breadcrumb["data"] == {
            "monitor": "Test Monitor",
            "url": snapshot.url,
            "stage": "static",
        }
        mock_sentry.scope.set_tag.assert_any_call("watcher.stage", "static")
        mock_sentry.scope.set_extra.assert_any_call("monitor_id", str(snapshot.id))
        mock_sentry.capture_exception.assert_called_once_with(error)

    def test_sensitive_context_is_filtered(self, mock_sentry):
        from watcher.monitoring.sentry_integration import capture_check_error

        capture_check_error(
            error=RuntimeError("boom"),
            url="https://shop.example.com",
            extra_context={
                "cookies": {"session": "abc"},
                "headers": {"Authorization": "Bearer secret", "Accept": "text/html"},
                "attempt": 2,
            },
        )

        mock_sentry.scope.set_extra.assert_any_call(
            "check_context",
            {
                "cookies": "[Filtered]",
                "headers": {"Authorization": "[Filtered]", "Accept": "text/html"},
                "attempt": 2,
            },
        )

    def test_capture_alert(self, mock_sentry):
        from watcher.monitoring.sentry_integration import capture_alert

        capture_alert(
            "Monitor paused",
            level="warning",
            alert_type="auto_pause",
            monitor_id="m-1",
            monitor_name="Widget",
            extra_data={"failure_count": 3},
        )

        mock_sentry.scope.set_tag.assert_any_call("alert.type", "auto_pause")
        mock_sentry.scope.set_extra.assert_any_call("alert_data", {"failure_count": 3})
        mock_sentry.capture_message.assert_called_once_with("Monitor paused", level="warning")

    def test_sdk_errors_are_swallowed(self, mock_sentry):
        from watcher.monitoring.sentry_integration import add_check_breadcrumb

        mock_sentry.add_breadcrumb.side_effect = RuntimeError("transport closed")

        add_check_breadcrumb("Widget", "https://shop.example.com", stage="static")


class TestPauseThresholds:

    def test_default_thresholds_increase_by_tier(self):
        assert get_pause_threshold("free") == 3
        assert get_pause_threshold("pro") == 5
        assert get_pause_threshold("power") == 10

    def test_unknown_tier_uses_free(self):
        assert get_pause_threshold("enterprise") == 3
        assert get_pause_threshold(None) == 3


class TestFailureTracker:
    """Tests for FailureTracker against the in-memory store."""

    def test_increments_below_threshold(self):
        snapshot = make_snapshot(consecutive_failures=0)
        store = FakeStore(monitors=[snapshot])

        outcome = FailureTracker(store=store).record_failure(
            snapshot, "selector_missing", "Selector not found", "free"
        )

        assert outcome.failure_count == 1
        assert outcome.threshold == 3
        assert outcome.paused is False
        assert store.monitors[snapshot.id].active is True

    def test_pauses_at_threshold_and_alerts(self):
        snapshot = make_snapshot(consecutive_failures=4)
        store = FakeStore(monitors=[snapshot])

        with patch("watcher.monitoring.failure_tracker.trigger_pause_alert") as alert:
            outcome = FailureTracker(store=store).record_failure(
                snapshot, "error", "Failed to fetch page", "pro"
            )

        assert outcome.failure_count == 5
        assert outcome.paused is True
        stored = store.monitors[snapshot.id]
        assert stored.active is False
        assert stored.pause_reason == "Auto-paused after 5 consecutive failures"
        alert.assert_called_once_with(snapshot, 5, "Failed to fetch page")

    def test_fallback_when_store_reports_no_count(self):
        class NoCountStore(FakeStore):
            def record_check_failure(self, monitor_id, **kwargs):
                return None

        snapshot = make_snapshot(consecutive_failures=2)
        store = NoCountStore(monitors=[snapshot])

        with patch("watcher.monitoring.failure_tracker.trigger_pause_alert"):
            outcome = FailureTracker(store=store).record_failure(
                snapshot, "error", "boom", "free"
            )

        assert outcome.failure_count == 3
        assert outcome.paused is True
        fields = store.last_update(snapshot.id)
        assert fields["consecutive_failures"] == 3
        assert fields["active"] is False
        assert fields["pause_reason"] == "Auto-paused after 3 consecutive failures"

    def test_success_resets_counter(self):
        snapshot = make_snapshot(consecutive_failures=2, last_error="old")
        store = FakeStore(monitors=[snapshot])

        FailureTracker(store=store).record_success(snapshot.id, last_status="ok")

        stored = store.monitors[snapshot.id]
        assert stored.consecutive_failures == 0
        assert stored.last_error is None
        assert stored.last_status == "ok"

    def test_infrastructure_failure_leaves_counter(self):
        snapshot = make_snapshot(consecutive_failures=2)
        store = FakeStore(monitors=[snapshot])

        FailureTracker(store=store).record_infrastructure_failure(
            snapshot.id, "error", "Browserless service unavailable"
        )

        stored = store.monitors[snapshot.id]
        assert stored.consecutive_failures == 2
        assert stored.last_error == "Browserless service unavailable"
        assert store.failure_calls == []


@pytest.mark.django_db
class TestDjangoMonitorStore:
    """Tests for the ORM-backed store."""

    def _fail(self, store, monitor, threshold=3):
        return store.record_check_failure(
            monitor.id,
            status="error",
            error="Failed to fetch page",
            checked_at=timezone.now(),
            pause_threshold=threshold,
            pause_reason=f"Auto-paused after {threshold} consecutive failures",
        )

    def test_failure_counter_increments_atomically(self, monitor):
        store = DjangoMonitorStore()

        first = self._fail(store, monitor)
        second = self._fail(store, monitor)

        assert first.consecutive_failures == 1
        assert second.consecutive_failures == 2
        assert second.paused is False

        monitor.refresh_from_db()
        assert monitor.consecutive_failures == 2
        assert monitor.last_status == "error"
        assert monitor.last_error == "Failed to fetch page"
        assert monitor.active is True

    def test_reaching_threshold_pauses_once(self, monitor):
        store = DjangoMonitorStore()
        monitor.consecutive_failures = 2
        monitor.save()

        update = self._fail(store, monitor)
        again = self._fail(store, monitor)

        assert update.consecutive_failures == 3
        assert update.paused is True
        assert again.paused is False

        monitor.refresh_from_db()
        assert monitor.active is False
        assert monitor.pause_reason == "Auto-paused after 3 consecutive failures"

    def test_manually_paused_monitor_keeps_its_reason(self, monitor):
        store = DjangoMonitorStore()
        monitor.active = False
        monitor.consecutive_failures = 5
        monitor.pause_reason = "Paused by owner"
        monitor.save()

        update = self._fail(store, monitor)

        assert update.paused is False
        monitor.refresh_from_db()
        assert monitor.pause_reason == "Paused by owner"

    def test_missing_monitor(self, db):
        import uuid

        assert self._fail(DjangoMonitorStore(), make_snapshot(id=uuid.uuid4())) is None

    def test_snapshots_and_updates(self, monitor):
        store = DjangoMonitorStore()

        store.update_monitor(monitor.id, current_value="$10.00", last_status="ok")
        snapshot = store.get_monitor(monitor.id)

        assert snapshot.current_value == "$10.00"
        assert snapshot.selector == ".price"
        assert [m.id for m in store.get_all_active_monitors()] == [monitor.id]

    def test_change_records(self, monitor):
        store = DjangoMonitorStore()

        store.add_change_record(monitor.id, None, "$10.00")

        change = monitor.changes.get()
        assert change.old_value is None
        assert change.new_value == "$10.00"

    def test_success_writes_value_and_change_together(self, monitor):
        store = DjangoMonitorStore()

        store.record_check_success(
            monitor.id, change=(None, "$10.00"), current_value="$10.00", last_status="ok"
        )

        monitor.refresh_from_db()
        assert monitor.current_value == "$10.00"
        assert monitor.changes.get().new_value == "$10.00"

    def test_failed_change_record_rolls_back_value(self, monitor):
        store = DjangoMonitorStore()

        with patch(
            "watcher.models.MonitorChange.objects.create",
            side_effect=RuntimeError("db down"),
        ):
            with pytest.raises(RuntimeError):
                store.record_check_success(
                    monitor.id, change=(None, "$10.00"), current_value="$10.00"
                )

        monitor.refresh_from_db()
        assert monitor.current_value is None
        assert monitor.changes.count() == 0

    def test_user_tier(self, user_plan):
        store = DjangoMonitorStore()

        assert store.get_user_tier("user-1") == "pro"
        assert store.get_user_tier("someone-else") == "free"


@pytest.mark.django_db
class TestErrorLogger:
    """Tests for the persistent error log."""

    def test_repeated_messages_are_deduplicated(self):
        first = log_error("scheduler", "Metrics pruning failed")
        second = log_error("scheduler", "Metrics pruning failed")

        assert first.pk == second.pk
        assert second.occurrence_count == 2

    def test_resolved_entries_are_not_reused(self):
        first = log_error("scheduler", "Metrics pruning failed")
        first.resolved = True
        first.save()

        second = log_error("scheduler", "Metrics pruning failed")

        assert second.pk != first.pk

    def test_context_is_redacted(self):
        entry = log_info(
            "scraper",
            "Fetched with Bearer abc.def.ghi",
            context=LogContext(
                extra={
                    "api_key": "k-123",
                    "url": "https://shop.example.com/?token=s3cret&page=2",
                    "nested": {"password": "hunter2", "selector": ".price"},
                }
            ),
        )

        assert entry.message == "Fetched with Bearer [REDACTED]"
        assert entry.context == {
            "api_key": "[REDACTED]",
            "url": "https://shop.example.com/?token=[REDACTED]&page=2",
            "nested": {"password": "[REDACTED]", "selector": ".price"},
        }

    def test_long_messages_are_truncated(self):
        entry = log_info("scraper", "y" * 1500)

        assert entry.message == "y" * 1000 + "...[truncated]"

    def test_error_type_and_stack_trace(self):
        try:
            raise ValueError("bad selector")
        except ValueError as e:
            entry = log_error("scraper", "Extraction failed", error=e)

        assert entry.error_type == "ValueError"
        assert "bad selector" in entry.stack_trace

    def test_monitor_id_is_recorded(self, monitor):
        entry = log_info(
            "scraper",
            '"Test Monitor" auto-healed selector',
            context=LogContext(monitor_id=monitor.id, extra={"oldSelector": ".price"}),
        )

        assert entry.monitor_id == monitor.id
        assert entry.level == "info"

    def test_persist_failure_returns_none(self):
        with patch(
            "watcher.monitoring.error_logger.transaction.atomic",
            side_effect=RuntimeError("database is locked"),
        ):
            assert write_log_entry("error", "scheduler", "boom") is None


@pytest.mark.django_db
class TestMetrics:
    """Tests for per-stage metrics."""

    def test_record_metric(self, monitor):
        from watcher.models import MonitorMetric

        record_metric(monitor.id, "static", 120, "ok", selector_count=1)

        metric = MonitorMetric.objects.get()
        assert metric.stage == "static"
        assert metric.duration_ms == 120
        assert metric.selector_count == 1
        assert metric.blocked is False

    def test_record_metric_failure_is_swallowed(self, monitor):
        with patch(
            "watcher.models.MonitorMetric.objects.create", side_effect=RuntimeError("db down")
        ):
            record_metric(monitor.id, "static", 10, "ok")

    def test_prune_old_metrics(self, monitor):
        from watcher.models import MonitorMetric

        old = MonitorMetric.objects.create(monitor=monitor, stage="static", duration_ms=1, status="ok")
        MonitorMetric.objects.filter(pk=old.pk).update(
            created_at=timezone.now() - timedelta(days=120)
        )
        MonitorMetric.objects.create(monitor=monitor, stage="static", duration_ms=1, status="ok")

        assert prune_metrics(90) == 1
        assert MonitorMetric.objects.count() == 1

"""
Tests for Celery tasks, the health endpoint and the management commands.
"""

import uuid
from io import StringIO
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from watcher.extraction.selector_heal import DiscoveryResult, SelectorSuggestion
from watcher.services.check_engine import CheckOutcome
from watcher.services.scheduler import TickResult


def make_engine_class(outcome):
    engine_class = MagicMock()
    engine_class.return_value.run_check = AsyncMock(return_value=outcome)
    return engine_class


class TestCheckDueMonitorsTask:
    """Tests for the check_due_monitors task."""

    def test_returns_tick_summary(self):
        from watcher.tasks import check_due_monitors

        scheduler = MagicMock()
        scheduler.tick = AsyncMock(return_value=TickResult(active=3, due=2, dispatched=["a", "b"]))
        scheduler.wait_for_dispatched = AsyncMock()
        scheduler.dropped = 1

        with patch("watcher.services.scheduler.MonitorScheduler", return_value=scheduler):
            result = check_due_monitors()

        assert result == {"active": 3, "due": 2, "dispatched": ["a", "b"], "dropped": 1}
        scheduler.wait_for_dispatched.assert_awaited_once()


@pytest.mark.django_db
class TestRunMonitorCheckTask:
    """Tests for the run_monitor_check task."""

    def test_missing_monitor(self):
        from watcher.tasks import run_monitor_check

        monitor_id = str(uuid.uuid4())
        result = run_monitor_check(monitor_id)

        assert result == {"monitor_id": monitor_id, "error": "Monitor not found"}

    def test_returns_outcome(self, monitor):
        from watcher.tasks import run_monitor_check

        outcome = CheckOutcome(
            changed=True, current_value="$8.00", previous_value="$10.00", status="ok"
        )
        engine_class = make_engine_class(outcome)

        with patch("watcher.services.check_engine.CheckEngine", engine_class):
            result = run_monitor_check(str(monitor.id))

        assert result["status"] == "ok"
        assert result["changed"] is True
        assert result["current_value"] == "$8.00"
        assert result["previous_value"] == "$10.00"
        assert result["error"] is None
        checked = engine_class.return_value.run_check.await_args[0][0]
        assert checked.id == monitor.id


class TestPruneMonitorMetricsTask:
    """Tests for the prune_monitor_metrics task."""

    def test_returns_deleted_count(self):
        from watcher.tasks import prune_monitor_metrics

        with patch("watcher.monitoring.metrics.prune_metrics", return_value=4):
            assert prune_monitor_metrics() == {"deleted": 4}

    def test_failure_is_logged_not_raised(self):
        from watcher.tasks import prune_monitor_metrics

        with patch(
            "watcher.monitoring.metrics.prune_metrics", side_effect=RuntimeError("locked")
        ), patch("watcher.tasks.log_error") as log_error:
            result = prune_monitor_metrics()

        assert result == {"deleted": 0, "error": "locked"}
        assert log_error.call_args[0] == ("scheduler", "Metrics pruning failed")


@pytest.mark.django_db
class TestHealthCheck:
    """Tests for GET /api/health/."""

    @patch("watcher.views.get_celery_worker_count", return_value=2)
    def test_healthy(self, _workers, client, monitor):
        from watcher.models import Monitor

        Monitor.objects.create(
            user_id="user-1",
            name="Broken",
            url="https://shop.example.com/product/2",
            selector=".gone",
            last_status="selector_missing",
        )

        response = client.get("/api/health/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["redis"] == "not_configured"
        assert data["celery_workers"] == 2
        assert data["active_monitors"] == 2
        assert data["failing_monitors"] == 1

    @patch("watcher.views.get_celery_worker_count", return_value=0)
    def test_database_down(self, _workers, client):
        with patch("watcher.views.connection") as connection:
            connection.ensure_connection.side_effect = RuntimeError("no db")
            response = client.get("/api/health/")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["database"] == "error"
        assert data["active_monitors"] is None


@pytest.mark.django_db
class TestCheckMonitorCommand:
    """Tests for manage.py check_monitor."""

    def test_unknown_monitor(self):
        with pytest.raises(CommandError, match="not found"):
            call_command("check_monitor", str(uuid.uuid4()))

    def test_prints_outcome(self, monitor):
        outcome = CheckOutcome(
            changed=False,
            current_value=None,
            previous_value=None,
            status="selector_missing",
            error="Selector not found",
        )
        out = StringIO()

        with patch(
            "watcher.management.commands.check_monitor.CheckEngine",
            make_engine_class(outcome),
        ):
            call_command("check_monitor", str(monitor.id), stdout=out)

        output = out.getvalue()
        assert "Status: selector_missing" in output
        assert "Error: Selector not found" in output


class TestDiscoverSelectorsCommand:
    """Tests for manage.py discover_selectors."""

    def _renderer(self, result=None, error=None, configured=True):
        renderer = MagicMock()
        renderer.is_configured = configured
        renderer.discover_selectors = AsyncMock(return_value=result, side_effect=error)
        return renderer

    def test_requires_renderer(self):
        with patch(
            "watcher.management.commands.discover_selectors.RendererClient",
            return_value=self._renderer(configured=False),
        ):
            with pytest.raises(CommandError, match="BROWSERLESS_URL"):
                call_command("discover_selectors", "https://shop.example.com", "$49.99")

    def test_lists_suggestions(self):
        result = DiscoveryResult(
            suggestions=[
                SelectorSuggestion(selector="#price", match_count=1, sample_text="$49.99"),
                SelectorSuggestion(selector="span.amount", match_count=1, sample_text="$49.99"),
            ]
        )
        out = StringIO()

        with patch(
            "watcher.management.commands.discover_selectors.RendererClient",
            return_value=self._renderer(result),
        ):
            call_command(
                "discover_selectors", "https://shop.example.com", "$49.99", "--limit", "1",
                stdout=out,
            )

        output = out.getvalue()
        assert "Found 2 selector(s)" in output
        assert "#price" in output
        assert "span.amount" not in output

    def test_no_matches_prints_debug(self):
        result = DiscoveryResult(debug={"title": "Blocked"})
        out = StringIO()

        with patch(
            "watcher.management.commands.discover_selectors.RendererClient",
            return_value=self._renderer(result),
        ):
            call_command("discover_selectors", "https://shop.example.com", "$49.99", stdout=out)

        output = out.getvalue()
        assert "No matching elements found" in output
        assert '"title": "Blocked"' in output

    def test_discovery_failure(self):
        with patch(
            "watcher.management.commands.discover_selectors.RendererClient",
            return_value=self._renderer(error=TimeoutError("slow")),
        ):
            with pytest.raises(CommandError, match="Discovery failed: slow"):
                call_command("discover_selectors", "https://shop.example.com", "$49.99")


class TestRunSchedulerCommand:
    """Tests for manage.py run_scheduler."""

    def test_runs_requested_ticks(self):
        scheduler = MagicMock()
        scheduler.tick_seconds = 60
        scheduler.max_concurrent = 5
        scheduler.dropped = 0
        scheduler.run_forever = AsyncMock()
        out = StringIO()

        with patch(
            "watcher.management.commands.run_scheduler.MonitorScheduler",
            return_value=scheduler,
        ) as scheduler_class:
            call_command("run_scheduler", "--ticks", "2", "--max-concurrent", "5", stdout=out)

        scheduler_class.assert_called_once_with(max_concurrent=5, max_jitter_seconds=None)
        scheduler.run_forever.assert_awaited_once_with(max_ticks=2)
        assert "Scheduler finished" in out.getvalue()

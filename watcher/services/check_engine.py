"""
Check Engine - one deterministic outcome per monitor check.

Pipeline:
1. Static fetch (httpx through the SSRF-safe layer, curl fallback)
2. Static extraction + block detection, with one delayed re-fetch when
   nothing was found on an unblocked page
3. Rendering backend (remote headless browser) when static found nothing
   or the page is blocked, capacity permitting; transient failures are
   retried once, infrastructure failures end the check immediately
4. Selector auto-heal when the selector stopped matching on an unblocked page
5. Change detection, change record and notification on success
6. Failure tracking and auto-pause on every other status

Statuses: ok, blocked, selector_missing, error. run_check() never raises.

Usage:
    engine = CheckEngine()
    outcome = await engine.run_check(monitor_snapshot)
    if outcome.changed:
        ...
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from asgiref.sync import sync_to_async
from django.conf import settings

from watcher.extraction.block_detection import detect_page_block_reason
from watcher.extraction.normalization import normalize_value
from watcher.extraction.selector_heal import select_best_suggestion
from watcher.extraction.static_extractor import (
    count_matches,
    extract_value_from_html,
    normalize_selector,
    parse_html,
)
from watcher.fetchers.page_fetcher import PageFetcher
from watcher.fetchers.renderer import RendererClient, RenderResult
from watcher.fetchers.retry_policy import RenderFailureKind, RetryExhaustedError, RetryPolicy
from watcher.models import LAST_ERROR_MAX_LENGTH, CheckStage, CheckStatus
from watcher.monitoring.error_logger import LogContext, log_info, log_warning
from watcher.monitoring.metrics import record_metric
from watcher.monitoring.sentry_integration import add_check_breadcrumb, capture_check_error

logger = logging.getLogger(__name__)

BROWSERLESS_UNAVAILABLE = "Browserless service unavailable"
SELECTOR_NOT_FOUND = "Selector not found"
FETCH_FAILED = "Failed to fetch page"
UNKNOWN_ERROR = "Unknown error"
NO_MATCHING_ELEMENTS = "no matching elements found"


@dataclass
class CheckOutcome:
    """Contract between the engine and its caller."""

    changed: bool
    current_value: Optional[str]
    previous_value: Optional[str]
    status: str
    error: Optional[str] = None


@dataclass
class StageVerdict:
    """What one extraction stage concluded."""

    value: Optional[str] = None
    blocked: bool = False
    block_reason: Optional[str] = None


@dataclass
class RenderAttempt:
    """Outcome of the rendering stage after retries."""

    result: Optional[RenderResult] = None
    failure_kind: Optional[RenderFailureKind] = None
    error: Optional[str] = None


@dataclass
class HealResult:
    """Outcome of selector auto-heal."""

    value: Optional[str] = None
    selector: Optional[str] = None
    failure: Optional[str] = None


def truncate_error(message: Optional[str], limit: int = LAST_ERROR_MAX_LENGTH) -> Optional[str]:
    """Cut an error message to the stored length."""
    if message is None:
        return None
    return message[:limit]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class CheckEngine:
    """
    Orchestrates a single monitor check.

    Collaborators are injected so the engine can run against any store,
    notifier or rendering backend; defaults use the Django implementations.
    """

    def __init__(
        self,
        store=None,
        notifier=None,
        capacity_gate=None,
        renderer: Optional[RendererClient] = None,
        failure_tracker=None,
        retry_policy: Optional[RetryPolicy] = None,
        fetcher_factory=None,
        static_retry_delay: Optional[float] = None,
    ):
        """
        Initialize the check engine.

        Args:
            store: MonitorStore (default DjangoMonitorStore)
            notifier: Notifier (default EmailNotifier)
            capacity_gate: Rendering capacity gate (default RendererCapacityGate)
            renderer: Rendering backend client (default from settings)
            failure_tracker: FailureTracker (default bound to store)
            retry_policy: Rendering retry policy
            fetcher_factory: Callable returning a PageFetcher-like async context manager
            static_retry_delay: Seconds before the static re-fetch (default from settings)
        """
        if store is None:
            from watcher.store import DjangoMonitorStore

            store = DjangoMonitorStore()
        if notifier is None:
            from .notifier import EmailNotifier

            notifier = EmailNotifier(store=store)
        if capacity_gate is None:
            from .capacity_gate import RendererCapacityGate

            capacity_gate = RendererCapacityGate()
        if failure_tracker is None:
            from watcher.monitoring.failure_tracker import FailureTracker

            failure_tracker = FailureTracker(store=store)

        self.store = store
        self.notifier = notifier
        self.capacity_gate = capacity_gate
        self.renderer = renderer or RendererClient()
        self.failure_tracker = failure_tracker
        self.retry_policy = retry_policy or RetryPolicy()
        self.fetcher_factory = fetcher_factory or PageFetcher
        self.static_retry_delay = (
            static_retry_delay
            if static_retry_delay is not None
            else getattr(settings, "WATCHER_STATIC_RETRY_DELAY", 2.0)
        )

    async def run_check(self, monitor) -> CheckOutcome:
        """
        Run one check for a monitor snapshot.

        Args:
            monitor: MonitorSnapshot

        Returns:
            CheckOutcome; never raises
        """
        add_check_breadcrumb(monitor.name, monitor.url, stage="start", message="Check started")
        try:
            return await self._run_check(monitor)
        except Exception as e:
            message = str(e) or UNKNOWN_ERROR
            logger.error(f"Unhandled error checking monitor {monitor.id}: {message}")
            capture_check_error(error=e, monitor=monitor, stage="check")
            try:
                tier = await self._get_tier(monitor)
                return await self._finish_failure(monitor, tier, CheckStatus.ERROR, message)
            except Exception as persist_error:
                logger.error(
                    f"Failed to persist error status for monitor {monitor.id}: {persist_error}"
                )
                return self._failure_outcome(monitor, CheckStatus.ERROR, truncate_error(message))

    async def _run_check(self, monitor) -> CheckOutcome:
        tier = await self._get_tier(monitor)

        # 1. Static fetch
        started = time.monotonic()
        try:
            html = await self._fetch(monitor.url)
        except Exception as e:
            message = str(e) or UNKNOWN_ERROR
            await self._record_metric(monitor, CheckStage.STATIC, started, "error")
            logger.info(f"Static fetch failed for monitor {monitor.id}: {message}")
            return await self._finish_failure(monitor, tier, CheckStatus.ERROR, message)

        if not html or not html.strip():
            await self._record_metric(monitor, CheckStage.STATIC, started, "empty")
            return await self._finish_failure(monitor, tier, CheckStatus.ERROR, FETCH_FAILED)

        # 2. Static extraction and block detection
        soup = parse_html(html)
        verdict = self._evaluate_html(soup, monitor.selector)
        await self._record_metric(
            monitor,
            CheckStage.STATIC,
            started,
            self._verdict_status(verdict),
            selector_count=count_matches(soup, normalize_selector(monitor.selector)),
            verdict=verdict,
        )

        if verdict.value is None and not verdict.blocked:
            html, verdict = await self._static_retry(monitor, html, verdict)

        static_html = html
        ever_blocked = verdict.blocked

        # 3. Rendering backend
        if (verdict.value is None or verdict.blocked) and self.renderer.is_configured:
            if await self._renderer_allowed(monitor, tier):
                attempt = await self._render_with_retry(monitor)

                if attempt.failure_kind == RenderFailureKind.INFRASTRUCTURE:
                    return await self._finish_infrastructure_failure(monitor, attempt.error)

                if attempt.result is not None:
                    verdict = StageVerdict(
                        value=attempt.result.value,
                        blocked=attempt.result.blocked,
                        block_reason=attempt.result.block_reason,
                    )
                    ever_blocked = ever_blocked or verdict.blocked

        # 4. Still nothing: blocked, auto-heal, or selector missing
        value = verdict.value
        if value is None:
            if verdict.blocked:
                reason = verdict.block_reason or "unknown"
                return await self._finish_failure(
                    monitor, tier, CheckStatus.BLOCKED, f"Page blocked ({reason})"
                )

            error = SELECTOR_NOT_FOUND
            if (
                not ever_blocked
                and monitor.current_value is not None
                and self.renderer.is_configured
            ):
                heal = await self._attempt_auto_heal(monitor, tier, static_html)
                if heal.value is not None:
                    value = heal.value
                elif heal.failure:
                    error = f"{SELECTOR_NOT_FOUND} (auto-recovery failed: {heal.failure})"

            if value is None:
                return await self._finish_failure(
                    monitor, tier, CheckStatus.SELECTOR_MISSING, error
                )

        # 5/6. Success
        return await self._finish_success(monitor, normalize_value(value))

    async def _get_tier(self, monitor) -> str:
        try:
            return await sync_to_async(self.store.get_user_tier)(monitor.user_id) or "free"
        except Exception as e:
            logger.warning(f"Failed to resolve tier for user {monitor.user_id}: {e}")
            return "free"

    async def _fetch(self, url: str) -> str:
        async with self.fetcher_factory() as fetcher:
            response = await fetcher.fetch(url)
        return response.content

    def _evaluate_html(self, soup, selector: str) -> StageVerdict:
        block = detect_page_block_reason(soup)
        return StageVerdict(
            value=extract_value_from_html(soup, selector),
            blocked=block.blocked,
            block_reason=block.reason,
        )

    @staticmethod
    def _verdict_status(verdict: StageVerdict) -> str:
        if verdict.value is not None and not verdict.blocked:
            return CheckStatus.OK
        if verdict.blocked:
            return CheckStatus.BLOCKED
        return CheckStatus.SELECTOR_MISSING

    async def _static_retry(self, monitor, html: str, verdict: StageVerdict):
        """
        Re-fetch once after a short delay.

        Late-filled pages and flaky CDNs often serve the value on the
        second request. A failed or empty retry keeps the first result.
        """
        await asyncio.sleep(self.static_retry_delay)

        started = time.monotonic()
        try:
            retry_html = await self._fetch(monitor.url)
        except Exception as e:
            logger.info(f"Static retry failed for monitor {monitor.id}: {e}")
            await self._record_metric(monitor, CheckStage.STATIC_RETRY, started, "error")
            return html, verdict

        if not retry_html or not retry_html.strip():
            await self._record_metric(monitor, CheckStage.STATIC_RETRY, started, "empty")
            return html, verdict

        retry_verdict = self._evaluate_html(parse_html(retry_html), monitor.selector)
        await self._record_metric(
            monitor,
            CheckStage.STATIC_RETRY,
            started,
            self._verdict_status(retry_verdict),
            verdict=retry_verdict,
        )
        return retry_html, retry_verdict

    async def _renderer_allowed(self, monitor, tier: str) -> bool:
        try:
            decision = await sync_to_async(self.capacity_gate.can_use_renderer)(
                monitor.user_id, tier
            )
        except Exception as e:
            logger.warning(f"Renderer capacity check failed for monitor {monitor.id}: {e}")
            return False

        if not decision.allowed:
            logger.debug(f"Renderer not allowed for monitor {monitor.id}: {decision.reason}")
        return decision.allowed

    async def _record_renderer_usage(self, monitor, duration_ms: int, success: bool):
        try:
            await sync_to_async(self.capacity_gate.record_renderer_usage)(
                monitor.user_id, monitor.id, duration_ms, success
            )
        except Exception as e:
            logger.warning(f"Failed to record renderer usage for monitor {monitor.id}: {e}")

    async def _render_with_retry(self, monitor) -> RenderAttempt:
        """Run the rendering stage under the retry policy."""

        async def attempt(number: int) -> RenderResult:
            stage = CheckStage.RENDERER if number == 0 else CheckStage.RENDERER_RETRY
            add_check_breadcrumb(monitor.name, monitor.url, stage=stage, message="Rendering")
            started = time.monotonic()
            try:
                result = await self.renderer.extract(monitor.url, monitor.selector)
            except Exception as e:
                kind = self.retry_policy.classify(e)
                await self._record_metric(monitor, stage, started, f"error:{kind.value}")
                if kind != RenderFailureKind.INFRASTRUCTURE:
                    await self._record_renderer_usage(monitor, _elapsed_ms(started), False)
                raise

            verdict = StageVerdict(result.value, result.blocked, result.block_reason)
            await self._record_metric(
                monitor,
                stage,
                started,
                self._verdict_status(verdict),
                selector_count=result.selector_count,
                verdict=verdict,
            )
            await self._record_renderer_usage(
                monitor, _elapsed_ms(started), result.value is not None
            )
            return result

        try:
            return RenderAttempt(result=await self.retry_policy.run(attempt))
        except RetryExhaustedError as e:
            if e.kind == RenderFailureKind.INFRASTRUCTURE:
                logger.warning(f"Rendering backend unavailable: {e.last_error}")
            else:
                logger.warning(
                    f"Rendering failed for monitor {monitor.id} after "
                    f"{e.attempts} attempt(s) ({e.kind.value}): {e.last_error}"
                )
            return RenderAttempt(failure_kind=e.kind, error=str(e.last_error))

    async def _attempt_auto_heal(self, monitor, tier: str, static_html: str) -> HealResult:
        """
        Look for a replacement selector on the rendered page.

        Never raises; failures are reported through HealResult.failure.
        """
        started = time.monotonic()
        status = "failed"
        try:
            if not await self._renderer_allowed(monitor, tier):
                status = "not_allowed"
                return HealResult()

            add_check_breadcrumb(monitor.name, monitor.url, stage="auto_heal", message="Auto-heal")
            session_started = time.monotonic()
            try:
                discovery = await self.renderer.discover_selectors(
                    monitor.url, monitor.current_value
                )
            except Exception:
                await self._record_renderer_usage(monitor, _elapsed_ms(session_started), False)
                raise
            await self._record_renderer_usage(
                monitor, _elapsed_ms(session_started), bool(discovery.suggestions)
            )

            best = select_best_suggestion(discovery.suggestions)
            if best is None:
                status = "no_match"
                logger.info(
                    f"Auto-heal found no candidates for monitor {monitor.id}: {discovery.debug}"
                )
                return HealResult(failure=NO_MATCHING_ELEMENTS)

            value = extract_value_from_html(static_html, best.selector)
            if value is None:
                value = normalize_value(best.sample_text) or None
            if value is None:
                status = "empty_value"
                return HealResult(failure="suggested selector has no text")

            old_selector = monitor.selector
            await sync_to_async(self.store.update_monitor)(monitor.id, selector=best.selector)
            await sync_to_async(log_info)(
                "scraper",
                f'"{monitor.name}" auto-healed selector',
                context=LogContext(
                    monitor_id=monitor.id,
                    extra={
                        "oldSelector": old_selector,
                        "newSelector": best.selector,
                        "matchCount": best.match_count,
                        "url": monitor.url,
                    },
                ),
            )
            logger.info(
                f"Monitor {monitor.id} auto-healed selector {old_selector!r} -> {best.selector!r}"
            )
            status = "healed"
            return HealResult(value=value, selector=best.selector)

        except Exception as e:
            logger.warning(f"Auto-heal failed for monitor {monitor.id}: {e}")
            return HealResult(failure=str(e) or e.__class__.__name__)

        finally:
            await self._record_metric(monitor, CheckStage.AUTO_HEAL, started, status)

    async def _finish_success(self, monitor, value: str) -> CheckOutcome:
        from django.utils import timezone

        previous = monitor.current_value
        changed = value != previous
        now = timezone.now()

        fields = {
            "current_value": value,
            "last_checked": now,
            "last_status": CheckStatus.OK,
        }
        if changed:
            fields["last_changed"] = now

        await sync_to_async(self.failure_tracker.record_success)(
            monitor.id,
            change=(previous, value) if changed else None,
            **fields,
        )

        if changed:
            logger.info(f"Monitor {monitor.id} changed: {previous!r} -> {value!r}")

            if monitor.email_enabled:
                try:
                    result = await sync_to_async(self.notifier.send_change_notification)(
                        monitor, previous, value
                    )
                    if not result.success:
                        logger.info(
                            f"Change notification for monitor {monitor.id} not sent: {result.error}"
                        )
                except Exception as e:
                    logger.warning(f"Change notification failed for monitor {monitor.id}: {e}")

        return CheckOutcome(
            changed=changed,
            current_value=value,
            previous_value=previous,
            status=CheckStatus.OK,
            error=None,
        )

    async def _finish_failure(self, monitor, tier: str, status: str, error: str) -> CheckOutcome:
        error = truncate_error(error)

        outcome = await sync_to_async(self.failure_tracker.record_failure)(
            monitor, status, error, tier
        )

        if outcome.paused and monitor.email_enabled:
            try:
                result = await sync_to_async(self.notifier.send_pause_notification)(
                    monitor, outcome.failure_count, error
                )
                if not result.success:
                    logger.info(
                        f"Pause notification for monitor {monitor.id} not sent: {result.error}"
                    )
            except Exception as e:
                logger.warning(f"Pause notification failed for monitor {monitor.id}: {e}")

        return self._failure_outcome(monitor, status, error)

    async def _finish_infrastructure_failure(self, monitor, detail: Optional[str]) -> CheckOutcome:
        """Rendering backend down: report error without counting it against the monitor."""
        await sync_to_async(self.failure_tracker.record_infrastructure_failure)(
            monitor.id, CheckStatus.ERROR, BROWSERLESS_UNAVAILABLE
        )
        await sync_to_async(log_warning)(
            "browserless",
            BROWSERLESS_UNAVAILABLE,
            context=LogContext(
                monitor_id=monitor.id,
                extra={"detail": truncate_error(detail), "url": monitor.url},
            ),
        )
        return self._failure_outcome(monitor, CheckStatus.ERROR, BROWSERLESS_UNAVAILABLE)

    @staticmethod
    def _failure_outcome(monitor, status: str, error: Optional[str]) -> CheckOutcome:
        # The previously accepted value is carried through unchanged
        return CheckOutcome(
            changed=False,
            current_value=monitor.current_value,
            previous_value=monitor.current_value,
            status=status,
            error=error,
        )

    async def _record_metric(
        self,
        monitor,
        stage: str,
        started: float,
        status: str,
        selector_count: Optional[int] = None,
        verdict: Optional[StageVerdict] = None,
    ) -> None:
        await sync_to_async(record_metric)(
            monitor.id,
            stage,
            _elapsed_ms(started),
            str(status),
            selector_count=selector_count,
            blocked=bool(verdict and verdict.blocked),
            block_reason=verdict.block_reason if verdict else None,
        )

"""
Rendering backend client - Playwright over CDP to a remote browser.

Used when static extraction finds nothing or the page is a challenge.
Connects to the remote headless browser (BROWSERLESS_URL), loads the page
with a realistic context, dismisses consent banners, waits for the page to
settle and extracts with the same rules as static extraction.

Usage:
    client = RendererClient()
    if client.is_configured:
        result = await client.extract(url, ".price")

    # Raw session access (selector discovery)
    async with client.session(url) as rendered:
        html = await rendered.content()
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from django.conf import settings

from watcher.extraction.block_detection import detect_page_block_reason
from watcher.extraction.selector_heal import DiscoveryResult, discover_selectors
from watcher.extraction.static_extractor import extract_value_from_html, normalize_selector, parse_html
from .consent import dismiss_consent_banners
from .retry_policy import RendererError, RendererInfrastructureError

logger = logging.getLogger(__name__)

# Post-consent settle delay and the shorter second network-idle wait
SETTLE_DELAY_MS = 1500
SECOND_NETWORK_IDLE_TIMEOUT_MS = 5000
SELECTOR_WAIT_TIMEOUT_MS = 5000
CONNECT_TIMEOUT_MS = 15000


@dataclass
class RenderResult:
    """Outcome of one rendered extraction."""

    value: Optional[str]
    blocked: bool
    block_reason: Optional[str]
    html: str
    selector_count: int = 0


class RenderedPage:
    """
    Page capability handed to selector discovery.

    Wraps a Playwright page so discovery only needs evaluate/count/title.
    """

    def __init__(self, page):
        self.page = page

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def count(self, selector: str) -> int:
        return await self.page.locator(selector).count()

    async def title(self) -> str:
        return await self.page.title()

    async def content(self) -> str:
        return await self.page.content()


class RendererClient:
    """
    Remote headless-browser client.

    Features:
    - Lazy Playwright import (only when a session is opened)
    - Connect failures surface as RendererInfrastructureError
    - Best-effort network-idle waits
    - Consent banner dismissal across frames
    """

    DEFAULT_USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    )

    VIEWPORT = {"width": 1366, "height": 900}

    def __init__(
        self,
        endpoint: Optional[str] = None,
        token: Optional[str] = None,
        navigation_timeout: Optional[float] = None,
        network_idle_timeout: Optional[float] = None,
    ):
        """
        Initialize the renderer client.

        Args:
            endpoint: CDP websocket endpoint (default BROWSERLESS_URL)
            token: Backend token (default BROWSERLESS_TOKEN)
            navigation_timeout: Navigation timeout in seconds
            network_idle_timeout: First network-idle wait in seconds
        """
        self.endpoint = endpoint if endpoint is not None else getattr(
            settings, "BROWSERLESS_URL", ""
        )
        self.token = token if token is not None else getattr(
            settings, "BROWSERLESS_TOKEN", ""
        )
        self.navigation_timeout = navigation_timeout or getattr(
            settings, "WATCHER_RENDER_NAVIGATION_TIMEOUT", 30
        )
        self.network_idle_timeout = network_idle_timeout or getattr(
            settings, "WATCHER_RENDER_NETWORK_IDLE_TIMEOUT", 15
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint)

    @property
    def ws_endpoint(self) -> str:
        if not self.token:
            return self.endpoint
        separator = "&" if "?" in self.endpoint else "?"
        return f"{self.endpoint}{separator}token={self.token}"

    @asynccontextmanager
    async def session(self, url: str) -> AsyncIterator[RenderedPage]:
        """
        Open a remote browser session with url loaded and settled.

        Raises:
            RendererInfrastructureError: when the backend cannot be reached
            RendererError: when no backend is configured
        """
        if not self.is_configured:
            raise RendererError("Rendering backend is not configured")

        from playwright.async_api import async_playwright

        async with async_playwright() as playwright:
            try:
                browser = await playwright.chromium.connect_over_cdp(
                    self.ws_endpoint, timeout=CONNECT_TIMEOUT_MS
                )
            except Exception as e:
                raise RendererInfrastructureError(f"connectOverCDP failed: {e}") from e

            try:
                context = await browser.new_context(
                    user_agent=self.DEFAULT_USER_AGENT,
                    locale="en-US",
                    viewport=self.VIEWPORT,
                )
                page = await context.new_page()
                await self._load_page(page, url)
                yield RenderedPage(page)
            finally:
                try:
                    await browser.close()
                except Exception as e:
                    logger.debug(f"Error closing rendering session: {e}")

    async def _load_page(self, page, url: str):
        """Navigate, wait, dismiss consent banners and settle."""
        await page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=int(self.navigation_timeout * 1000),
        )
        await self._wait_for_network_idle(page, int(self.network_idle_timeout * 1000))

        if await dismiss_consent_banners(page):
            logger.debug(f"Consent banner dismissed on {url}")

        await page.wait_for_timeout(SETTLE_DELAY_MS)
        await self._wait_for_network_idle(page, SECOND_NETWORK_IDLE_TIMEOUT_MS)

    async def _wait_for_network_idle(self, page, timeout_ms: int):
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except Exception as e:
            # Pages with long-polling never go idle; keep what has loaded
            logger.debug(f"Network idle wait ended early: {e}")

    async def extract(self, url: str, selector: str) -> RenderResult:
        """
        Render url and extract the value for selector.

        Args:
            url: Page URL
            selector: Monitor selector (bare-class rule applied)

        Returns:
            RenderResult with value (or None), block verdict and rendered HTML
        """
        normalized = normalize_selector(selector)
        started = time.monotonic()

        async with self.session(url) as rendered:
            selector_count = 0
            try:
                await rendered.page.wait_for_selector(
                    normalized, state="attached", timeout=SELECTOR_WAIT_TIMEOUT_MS
                )
                selector_count = await rendered.count(normalized)
            except Exception as e:
                logger.debug(f"Selector {normalized} not present after render: {e}")

            html = await rendered.content()

        document = parse_html(html)
        value = extract_value_from_html(document, selector)
        block = detect_page_block_reason(document)

        logger.info(
            f"Rendered {url} in {int((time.monotonic() - started) * 1000)}ms: "
            f"value={'found' if value else 'missing'}, blocked={block.blocked}"
        )

        return RenderResult(
            value=value,
            blocked=block.blocked,
            block_reason=block.reason,
            html=html,
            selector_count=selector_count,
        )

    async def discover_selectors(self, url: str, expected_text: str) -> DiscoveryResult:
        """
        Render url and look for selectors whose text matches expected_text.

        Args:
            url: Page URL
            expected_text: Value the selector should resolve to

        Returns:
            DiscoveryResult with ranked suggestions or debug context
        """
        async with self.session(url) as rendered:
            return await discover_selectors(rendered, expected_text)

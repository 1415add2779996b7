"""
Tests for page retrieval: SSRF validation, the static fetcher with its curl
fallback, the rendering retry policy and the rendering backend client.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from watcher.fetchers.consent import dismiss_consent_banners
from watcher.fetchers.page_fetcher import (
    FetchError,
    PageFetcher,
    is_header_overflow_error,
)
from watcher.fetchers.renderer import RendererClient
from watcher.fetchers.retry_policy import (
    RendererError,
    RendererInfrastructureError,
    RenderFailureKind,
    RetryExhaustedError,
    RetryPolicy,
    classify_render_error,
)
from watcher.fetchers.ssrf import (
    SSRFBlockedError,
    check_url_structure,
    is_private_ip,
    ssrf_safe_fetch,
    validate_url,
)

PUBLIC_IP = "93.184.216.34"


@pytest.fixture
def public_dns():
    """Resolve every hostname to a public address."""
    with patch(
        "watcher.fetchers.ssrf._resolve_host", new=AsyncMock(return_value=[PUBLIC_IP])
    ) as resolver:
        yield resolver


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=False)


class TestSSRFValidation:
    """Tests for URL validation."""

    @pytest.mark.parametrize(
        "address",
        ["127.0.0.1", "10.1.2.3", "192.168.0.10", "172.16.5.5", "169.254.169.254", "::1", "0.0.0.0", "::ffff:127.0.0.1"],
    )
    def test_private_addresses(self, address):
        assert is_private_ip(address) is True

    def test_public_address(self):
        assert is_private_ip(PUBLIC_IP) is False
        assert is_private_ip("not-an-ip") is False

    @pytest.mark.parametrize(
        "url,message",
        [
            ("ftp://example.com/file", "Only http and https URLs are allowed"),
            ("http://localhost:8000/", "This hostname is not allowed"),
            ("http://metadata.google.internal/", "This hostname is not allowed"),
            ("http://printer.local/", "Internal hostnames are not allowed"),
            ("http://169.254.169.254/latest/meta-data", "Private or internal IP addresses are not allowed"),
            ("http:///path", "Invalid URL format"),
        ],
    )
    def test_structural_rejections(self, url, message):
        assert check_url_structure(url) == message

    def test_public_url_passes_structure_check(self):
        assert check_url_structure("https://shop.example.com/p/1") is None

    @pytest.mark.asyncio
    async def test_hostname_resolving_to_private_address(self):
        with patch("watcher.fetchers.ssrf._resolve_host", new=AsyncMock(return_value=["10.0.0.5"])):
            with pytest.raises(SSRFBlockedError) as exc_info:
                await validate_url("https://internal.example.com/")

        assert exc_info.value.reason == "This URL resolves to a private or internal address"
        assert str(exc_info.value) == "SSRF blocked: This URL resolves to a private or internal address"

    @pytest.mark.asyncio
    async def test_unresolvable_hostname(self):
        import socket

        with patch(
            "watcher.fetchers.ssrf._resolve_host",
            new=AsyncMock(side_effect=socket.gaierror("Name or service not known")),
        ):
            with pytest.raises(SSRFBlockedError) as exc_info:
                await validate_url("https://nope.invalid/")

        assert exc_info.value.reason == "Could not resolve hostname"

    @pytest.mark.asyncio
    async def test_redirect_hops_are_validated(self, public_dns):
        def handler(request):
            return httpx.Response(302, headers={"location": "http://127.0.0.1/admin"})

        async with mock_client(handler) as client:
            with pytest.raises(SSRFBlockedError):
                await ssrf_safe_fetch(client, "https://shop.example.com/")

    @pytest.mark.asyncio
    async def test_relative_redirect_is_followed(self, public_dns):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "/new"})
            return httpx.Response(200, text="<html>moved</html>")

        async with mock_client(handler) as client:
            response = await ssrf_safe_fetch(client, "https://shop.example.com/old")

        assert response.status_code == 200
        assert seen == ["https://shop.example.com/old", "https://shop.example.com/new"]


class TestPageFetcher:
    """Tests for PageFetcher.fetch()."""

    @pytest.mark.asyncio
    async def test_returns_body(self, public_dns):
        fetcher = PageFetcher()
        fetcher._http_client = mock_client(
            lambda request: httpx.Response(200, text="<div class='price'>$10</div>")
        )

        async with fetcher:
            response = await fetcher.fetch("https://shop.example.com/p/1")

        assert response.content == "<div class='price'>$10</div>"
        assert response.status_code == 200
        assert response.transport == "httpx"

    @pytest.mark.asyncio
    async def test_error_status_is_returned_for_block_detection(self, public_dns):
        fetcher = PageFetcher()
        fetcher._http_client = mock_client(
            lambda request: httpx.Response(403, text="<title>Access denied</title>")
        )

        async with fetcher:
            response = await fetcher.fetch("https://shop.example.com/p/1")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_transport_error_becomes_fetch_error(self, public_dns):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        fetcher = PageFetcher()
        fetcher._http_client = mock_client(handler)

        async with fetcher:
            with pytest.raises(FetchError, match="timed out"):
                await fetcher.fetch("https://shop.example.com/p/1")

    @pytest.mark.asyncio
    async def test_redirect_loop_becomes_fetch_error(self, public_dns):
        fetcher = PageFetcher(max_redirects=2)
        fetcher._http_client = mock_client(
            lambda request: httpx.Response(302, headers={"location": "/loop"})
        )

        async with fetcher:
            with pytest.raises(FetchError, match="Too many redirects"):
                await fetcher.fetch("https://shop.example.com/loop")

    @pytest.mark.asyncio
    async def test_ssrf_error_propagates(self):
        fetcher = PageFetcher()
        fetcher._http_client = mock_client(lambda request: httpx.Response(200))

        async with fetcher:
            with pytest.raises(SSRFBlockedError):
                await fetcher.fetch("http://localhost/")

    @pytest.mark.asyncio
    async def test_header_overflow_falls_back_to_curl(self, public_dns):
        def handler(request):
            raise httpx.RemoteProtocolError("Receive buffer too long", request=request)

        fetcher = PageFetcher()
        fetcher._http_client = mock_client(handler)
        fetcher.fetch_with_curl = AsyncMock(return_value="curl-response")

        async with fetcher:
            result = await fetcher.fetch("https://shop.example.com/p/1")

        assert result == "curl-response"
        fetcher.fetch_with_curl.assert_awaited_once_with("https://shop.example.com/p/1")

    def test_header_overflow_detection_walks_cause_chain(self):
        try:
            try:
                raise ValueError("line too long while parsing headers")
            except ValueError as inner:
                raise RuntimeError("request failed") from inner
        except RuntimeError as outer:
            assert is_header_overflow_error(outer) is True

        assert is_header_overflow_error(RuntimeError("connection reset")) is False


class TestCurlFallback:
    """Tests for the curl_cffi transport."""

    def _session(self, *responses):
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=False)
        session.get = AsyncMock(side_effect=list(responses))
        return session

    def _response(self, status_code=200, text="", headers=None):
        response = MagicMock()
        response.status_code = status_code
        response.text = text
        response.headers = headers or {}
        return response

    @pytest.mark.asyncio
    async def test_returns_decoded_body(self, public_dns):
        session = self._session(
            self._response(text="<html>Preis: 12 €</html>", headers={"content-type": "text/html"})
        )

        with patch("curl_cffi.requests.AsyncSession", return_value=session):
            response = await PageFetcher().fetch_with_curl("https://shop.example.com/p/1")

        assert response.content == "<html>Preis: 12 €</html>"
        assert response.status_code == 200
        assert response.transport == "curl"
        args, kwargs = session.get.call_args
        assert args[0] == "https://shop.example.com/p/1"
        assert kwargs["allow_redirects"] is False
        assert "Accept-Encoding" not in kwargs["headers"]

    @pytest.mark.asyncio
    async def test_relative_redirect_is_followed(self, public_dns):
        session = self._session(
            self._response(status_code=301, headers={"location": "/p/2"}),
            self._response(text="<html>moved</html>"),
        )

        with patch("curl_cffi.requests.AsyncSession", return_value=session):
            response = await PageFetcher().fetch_with_curl("https://shop.example.com/p/1")

        assert response.url == "https://shop.example.com/p/2"
        assert response.content == "<html>moved</html>"

    @pytest.mark.asyncio
    async def test_redirects_are_revalidated(self, public_dns):
        session = self._session(
            self._response(status_code=302, headers={"location": "http://127.0.0.1/admin"})
        )

        with patch("curl_cffi.requests.AsyncSession", return_value=session):
            with pytest.raises(SSRFBlockedError):
                await PageFetcher().fetch_with_curl("https://shop.example.com/p/1")

        assert session.get.await_count == 1

    @pytest.mark.asyncio
    async def test_redirect_cap(self, public_dns):
        loop = [
            self._response(status_code=302, headers={"location": "/again"}) for _ in range(3)
        ]
        session = self._session(*loop)

        with patch("curl_cffi.requests.AsyncSession", return_value=session):
            with pytest.raises(FetchError, match="Too many redirects"):
                await PageFetcher(max_redirects=2).fetch_with_curl("https://shop.example.com/p/1")

    @pytest.mark.asyncio
    async def test_transport_failure(self, public_dns):
        session = self._session(RuntimeError("Operation timed out after 20000 milliseconds"))

        with patch("curl_cffi.requests.AsyncSession", return_value=session):
            with pytest.raises(FetchError, match="Operation timed out"):
                await PageFetcher().fetch_with_curl("https://shop.example.com/p/1")


class TestRetryPolicy:
    """Tests for rendering failure classification and retries."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (RendererInfrastructureError("boom"), RenderFailureKind.INFRASTRUCTURE),
            (Exception("connect ECONNREFUSED 10.0.0.1:3000"), RenderFailureKind.INFRASTRUCTURE),
            (Exception("Timeout 30000ms exceeded"), RenderFailureKind.TRANSIENT),
            (Exception("Target page crashed"), RenderFailureKind.TRANSIENT),
            (Exception("'..x' is not a valid selector"), RenderFailureKind.PERMANENT),
        ],
    )
    def test_classification(self, error, kind):
        assert classify_render_error(error) == kind

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_once(self):
        operation = AsyncMock(side_effect=[RendererError("Navigation timeout"), "result"])

        result = await RetryPolicy().run(operation)

        assert result == "result"
        assert [c.args[0] for c in operation.await_args_list] == [0, 1]

    @pytest.mark.asyncio
    async def test_two_transient_failures_exhaust_budget(self):
        operation = AsyncMock(side_effect=RendererError("Navigation timeout"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await RetryPolicy().run(operation)

        assert exc_info.value.kind == RenderFailureKind.TRANSIENT
        assert exc_info.value.attempts == 2
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_infrastructure_failure_is_never_retried(self):
        operation = AsyncMock(side_effect=RendererInfrastructureError("connectOverCDP failed"))
        failures = []

        with pytest.raises(RetryExhaustedError) as exc_info:
            await RetryPolicy().run(operation, on_failure=lambda *args: failures.append(args))

        assert exc_info.value.kind == RenderFailureKind.INFRASTRUCTURE
        assert operation.await_count == 1
        assert len(failures) == 1


def make_playwright(page=None, connect_error=None):
    """Fake async_playwright() factory with a single page."""
    browser = MagicMock()
    browser.close = AsyncMock()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    browser.new_context = AsyncMock(return_value=context)

    playwright = MagicMock()
    if connect_error is not None:
        playwright.chromium.connect_over_cdp = AsyncMock(side_effect=connect_error)
    else:
        playwright.chromium.connect_over_cdp = AsyncMock(return_value=browser)

    manager = MagicMock()
    manager.__aenter__ = AsyncMock(return_value=playwright)
    manager.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=manager), browser


def make_page(html: str):
    page = MagicMock()
    page.frames = []
    page.goto = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.content = AsyncMock(return_value=html)
    page.locator.return_value.count = AsyncMock(return_value=1)
    return page


class TestRendererClient:
    """Tests for RendererClient against a faked Playwright."""

    def test_configuration(self):
        assert RendererClient(endpoint="").is_configured is False
        client = RendererClient(endpoint="wss://render.example.com", token="abc")
        assert client.is_configured is True
        assert client.ws_endpoint == "wss://render.example.com?token=abc"

    @pytest.mark.asyncio
    async def test_extract_renders_and_extracts(self):
        page = make_page("<html><body><span class='price'> $15.00 </span></body></html>")
        factory, browser = make_playwright(page)

        with patch("playwright.async_api.async_playwright", factory):
            result = await RendererClient(endpoint="wss://render.example.com").extract(
                "https://shop.example.com/p/1", "price"
            )

        assert result.value == "$15.00"
        assert result.blocked is False
        assert result.selector_count == 1
        page.goto.assert_awaited_once()
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_network_idle_timeout_is_not_fatal(self):
        page = make_page("<html><body><span class='price'>$15.00</span></body></html>")
        page.wait_for_load_state = AsyncMock(side_effect=Exception("Timeout 15000ms exceeded"))
        factory, _ = make_playwright(page)

        with patch("playwright.async_api.async_playwright", factory):
            result = await RendererClient(endpoint="wss://render.example.com").extract(
                "https://shop.example.com/p/1", ".price"
            )

        assert result.value == "$15.00"

    @pytest.mark.asyncio
    async def test_connect_failure_is_infrastructure(self):
        factory, _ = make_playwright(connect_error=Exception("connect ECONNREFUSED"))

        with patch("playwright.async_api.async_playwright", factory):
            with pytest.raises(RendererInfrastructureError, match="connectOverCDP failed"):
                await RendererClient(endpoint="wss://render.example.com").extract(
                    "https://shop.example.com/p/1", ".price"
                )

    @pytest.mark.asyncio
    async def test_unconfigured_client_refuses_sessions(self):
        with pytest.raises(RendererError):
            async with RendererClient(endpoint="").session("https://shop.example.com"):
                pass


class TestConsentDismissal:

    @pytest.mark.asyncio
    async def test_clicks_first_visible_button_in_subframe(self):
        hidden = MagicMock()
        hidden.count = AsyncMock(return_value=0)

        button = MagicMock()
        button.count = AsyncMock(return_value=1)
        button.is_visible = AsyncMock(return_value=True)
        button.click = AsyncMock()

        main_frame = MagicMock()
        main_frame.locator.return_value.first = hidden
        consent_frame = MagicMock()
        consent_frame.locator.return_value.first = button

        page = MagicMock()
        page.frames = [main_frame, consent_frame]

        assert await dismiss_consent_banners(page) is True
        button.click.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_banner(self):
        missing = MagicMock()
        missing.count = AsyncMock(side_effect=Exception("frame detached"))
        frame = MagicMock()
        frame.locator.return_value.first = missing
        page = MagicMock()
        page.frames = [frame]

        assert await dismiss_consent_banners(page) is False

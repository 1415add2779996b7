"""
Static page fetcher - httpx through the SSRF-safe layer.

The first stage of every check. Sends a single browser-like GET with a
bounded timeout. When the server answers with headers too large for the
httpx/h11 parser, the request is repeated through curl_cffi (libcurl) instead of
failing the check.

Usage:
    async with PageFetcher() as fetcher:
        response = await fetcher.fetch("https://example.com/product")
        html = response.content
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urljoin

import httpx

from django.conf import settings

from .ssrf import (
    DEFAULT_MAX_REDIRECTS,
    TooManyRedirectsError,
    ssrf_safe_fetch,
    validate_url,
)

logger = logging.getLogger(__name__)

# Lowercased fragments of parser errors raised for oversized response headers
HEADER_OVERFLOW_MARKERS = (
    "receive buffer too long",
    "header too large",
    "headers too large",
    "header overflow",
    "headers overflow",
    "line too long",
    "too many headers",
)


class FetchError(Exception):
    """Raised when the page could not be retrieved."""


@dataclass
class FetchResponse:
    """Response from a fetch operation."""

    content: str
    status_code: int
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    transport: str = "httpx"


def is_header_overflow_error(error: BaseException) -> bool:
    """
    Check an exception and its cause chain for an oversized-header failure.
    """
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = str(current).lower()
        if any(marker in message for marker in HEADER_OVERFLOW_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


class PageFetcher:
    """
    Static fetcher using async httpx.

    Features:
    - Browser-like default headers
    - SSRF validation of the target and every redirect hop
    - curl fallback for responses with oversized headers
    """

    DEFAULT_USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    )

    # No 'br': httpx only decodes brotli when the optional brotli package is present
    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
    }

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds (default from settings)
            max_redirects: Redirect hop cap (default from settings)
            user_agent: Custom User-Agent string
        """
        self.timeout = timeout or getattr(settings, "WATCHER_FETCH_TIMEOUT", 20)
        self.max_redirects = max_redirects or getattr(
            settings, "WATCHER_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS
        )
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT

        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._init_http_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    @property
    def request_headers(self) -> Dict[str, str]:
        return {**self.DEFAULT_HEADERS, "User-Agent": self.user_agent}

    async def _init_http_client(self):
        """Initialize HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self.request_headers,
                follow_redirects=False,
                http2=False,
            )

    async def close(self):
        """Close HTTP client connection."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, url: str) -> FetchResponse:
        """
        Fetch a page.

        Non-2xx responses are returned as-is: challenge pages are often
        served with 403/503 and still need block detection.

        Args:
            url: URL to fetch

        Returns:
            FetchResponse with the body and final URL

        Raises:
            SSRFBlockedError: when the target or a redirect hop is disallowed
            FetchError: for any other transport failure
        """
        if self._http_client is None:
            await self._init_http_client()

        try:
            response = await ssrf_safe_fetch(
                self._http_client,
                url,
                max_redirects=self.max_redirects,
            )
        except TooManyRedirectsError as e:
            raise FetchError(str(e)) from e
        except httpx.HTTPError as e:
            if is_header_overflow_error(e):
                logger.warning(
                    f"Response headers too large for httpx at {url}, retrying with curl"
                )
                return await self.fetch_with_curl(url)
            logger.warning(f"Static fetch failed for {url}: {e}")
            raise FetchError(str(e) or e.__class__.__name__) from e

        if response.status_code >= 400:
            logger.info(f"Static fetch got HTTP {response.status_code} for {url}")

        return FetchResponse(
            content=response.text,
            status_code=response.status_code,
            url=str(response.url),
            headers=dict(response.headers),
            transport="httpx",
        )

    async def fetch_with_curl(self, url: str) -> FetchResponse:
        """
        Fetch with curl_cffi, following redirects hop by hop.

        libcurl accepts response headers far larger than h11 does. Each hop
        goes through the same SSRF validation as the httpx path.
        """
        from curl_cffi.requests import AsyncSession

        headers = {
            name: value
            for name, value in self.request_headers.items()
            if name != "Accept-Encoding"
        }

        current_url = url
        async with AsyncSession() as session:
            for _ in range(self.max_redirects + 1):
                await validate_url(current_url)

                try:
                    response = await session.get(
                        current_url,
                        headers=headers,
                        timeout=self.timeout,
                        allow_redirects=False,
                        impersonate="chrome",
                    )
                except Exception as e:
                    logger.warning(f"curl fetch failed for {current_url}: {e}")
                    raise FetchError(str(e) or e.__class__.__name__) from e

                location = response.headers.get("location")
                if 300 <= response.status_code < 400 and location:
                    current_url = urljoin(current_url, location)
                    continue

                return FetchResponse(
                    content=response.text,
                    status_code=response.status_code,
                    url=current_url,
                    headers=dict(response.headers),
                    transport="curl",
                )

        raise FetchError(f"Too many redirects (max {self.max_redirects})")

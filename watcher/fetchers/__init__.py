"""
Page retrieval for monitor checks.

- PageFetcher: static httpx fetch through the SSRF-safe layer, curl fallback
- RendererClient: remote headless browser over CDP
- RetryPolicy: typed retry budget for rendering failures
"""

from .page_fetcher import FetchError, FetchResponse, PageFetcher, is_header_overflow_error
from .renderer import RenderedPage, RendererClient, RenderResult
from .retry_policy import (
    RendererError,
    RendererInfrastructureError,
    RenderFailureKind,
    RetryExhaustedError,
    RetryPolicy,
    classify_render_error,
)
from .ssrf import SSRFBlockedError, ssrf_safe_fetch, validate_url

__all__ = [
    "FetchError",
    "FetchResponse",
    "PageFetcher",
    "is_header_overflow_error",
    "RenderedPage",
    "RendererClient",
    "RenderResult",
    "RendererError",
    "RendererInfrastructureError",
    "RenderFailureKind",
    "RetryExhaustedError",
    "RetryPolicy",
    "classify_render_error",
    "SSRFBlockedError",
    "ssrf_safe_fetch",
    "validate_url",
]

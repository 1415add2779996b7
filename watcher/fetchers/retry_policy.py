"""
Typed retry policy for the rendering backend.

Rendering failures fall into three classes:
- INFRASTRUCTURE: the rendering backend itself is unreachable. Never retried
  and never counted against the monitor's failure streak.
- TRANSIENT: navigation timeouts, crashed pages and the like. Retried once.
- PERMANENT: failures a retry cannot fix (e.g. an unparsable selector).

Errors raised while connecting to the backend are infrastructure failures
by construction (see RendererInfrastructureError). Anything else is
classified from its message with the tables below.

Usage:
    policy = RetryPolicy()
    result = await policy.run(lambda attempt: renderer.extract(url, selector))
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenderFailureKind(enum.Enum):
    INFRASTRUCTURE = "infrastructure"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class RendererError(Exception):
    """A rendering attempt failed."""

    kind = RenderFailureKind.TRANSIENT


class RendererInfrastructureError(RendererError):
    """The rendering backend could not be reached."""

    kind = RenderFailureKind.INFRASTRUCTURE


# Lowercased message fragments, checked in this order
INFRASTRUCTURE_MARKERS = (
    "connectovercdp",
    "connect_over_cdp",
    "econnrefused",
    "connection refused",
    "browserless service unavailable",
    "websocket error",
    "failed to connect",
)

PERMANENT_MARKERS = (
    "is not a valid selector",
    "unexpected token",
    "invalid selector",
    "err_invalid_url",
    "err_name_not_resolved",
)

DEFAULT_RETRY_BUDGETS = {
    RenderFailureKind.INFRASTRUCTURE: 0,
    RenderFailureKind.TRANSIENT: 1,
    RenderFailureKind.PERMANENT: 0,
}


def classify_render_error(error: BaseException) -> RenderFailureKind:
    """
    Classify a rendering failure.

    Explicit RendererError subclasses win; otherwise the message is matched
    against the infrastructure and permanent marker tables, and anything
    unrecognised is treated as transient.
    """
    if isinstance(error, RendererInfrastructureError):
        return RenderFailureKind.INFRASTRUCTURE

    message = str(error).lower()
    if any(marker in message for marker in INFRASTRUCTURE_MARKERS):
        return RenderFailureKind.INFRASTRUCTURE
    if any(marker in message for marker in PERMANENT_MARKERS):
        return RenderFailureKind.PERMANENT

    if isinstance(error, RendererError):
        return error.kind
    return RenderFailureKind.TRANSIENT


class RetryExhaustedError(Exception):
    """Raised by RetryPolicy.run() when no attempt succeeded."""

    def __init__(self, last_error: BaseException, kind: RenderFailureKind, attempts: int):
        super().__init__(str(last_error))
        self.last_error = last_error
        self.kind = kind
        self.attempts = attempts


@dataclass
class RetryPolicy:
    """Retry budget keyed by failure classification."""

    budgets: Dict[RenderFailureKind, int] = field(
        default_factory=lambda: dict(DEFAULT_RETRY_BUDGETS)
    )
    classify: Callable[[BaseException], RenderFailureKind] = classify_render_error

    def retries_for(self, kind: RenderFailureKind) -> int:
        return self.budgets.get(kind, 0)

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        on_failure: Optional[Callable[[int, BaseException, RenderFailureKind], None]] = None,
    ) -> T:
        """
        Run operation(attempt) until it succeeds or the budget is spent.

        Args:
            operation: Coroutine factory, called with the 0-based attempt number
            on_failure: Optional hook called after each failed attempt

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: carrying the last error and its classification
        """
        attempt = 0
        while True:
            try:
                return await operation(attempt)
            except Exception as e:
                kind = self.classify(e)
                if on_failure is not None:
                    on_failure(attempt, e, kind)

                if attempt >= self.retries_for(kind):
                    raise RetryExhaustedError(e, kind, attempt + 1) from e

                logger.info(
                    f"Rendering attempt {attempt + 1} failed ({kind.value}): {e}; retrying"
                )
                attempt += 1

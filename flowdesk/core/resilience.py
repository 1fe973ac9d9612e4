"""Resilience helpers for step invocations.

Provides:
- RETRYABLE_EXCEPTIONS: exception types that are safe to retry
- is_retryable: classify a step failure as transient or terminal
- backoff_delay: capped exponential backoff schedule
"""

import asyncio
import logging

import httpx

from flowdesk.core.exceptions import TerminalStepFailure, TransientStepFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Retry classification
# ---------------------------------------------------------------------------

# Default exception types that are safe to retry
RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientStepFailure,
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def is_retryable(exc: BaseException) -> bool:
    """Decide whether a failed step invocation may be retried.

    Terminal failures (validation errors, missing executors) are never
    retried. Known network/timeout errors are retried. Anything else the
    executor raises is treated as transient, since executors wrap remote
    APIs whose error types are not known in advance.

    Args:
        exc: The exception raised by the step executor.

    Returns:
        ``True`` if another attempt is allowed.
    """
    if isinstance(exc, TerminalStepFailure):
        return False
    if isinstance(exc, RETRYABLE_EXCEPTIONS):
        return True
    logger.debug("Unclassified step error %s treated as transient", type(exc).__name__)
    return True


# ---------------------------------------------------------------------------
# Exponential backoff
# ---------------------------------------------------------------------------


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay to wait after failed attempt number *attempt*.

    The delay doubles per attempt and plateaus at *max_delay*, so successive
    delays for one step are non-decreasing. No jitter is applied.

    Args:
        attempt: 1-based number of the attempt that just failed.
        base_delay: Delay after the first failed attempt (seconds).
        max_delay: Cap on the computed delay (seconds).

    Returns:
        Delay in seconds.

    Raises:
        ValueError: If *attempt* is less than 1.
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    exponent = min(attempt - 1, 32)  # keeps the float product finite
    return min(base_delay * (2**exponent), max_delay)

"""
Retry utilities for transient network failures.

Wraps any awaitable-returning call with error classification and
exponential backoff with full jitter. Terminal failures are always
re-raised; callers decide how to degrade.
"""

import logging
import random
from asyncio import sleep
from typing import Awaitable, Callable, TypeVar

import httpx
from openai import APIConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Message fragments that identify a dropped or unreachable connection
NETWORK_ERROR_SIGNALS: tuple[str, ...] = (
    "Failed to fetch",
    "NetworkError",
    "Network request failed",
    "ERR_NETWORK_CHANGED",
    "ERR_INTERNET_DISCONNECTED",
    "ERR_CONNECTION_REFUSED",
    "ERR_CONNECTION_RESET",
    "Connection reset",
    "Connection refused",
    "Name or service not known",
    "Temporary failure in name resolution",
)

TRANSIENT_ERROR_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    APIConnectionError,
    httpx.TransportError,
)


def _status_of(error: BaseException) -> int | None:
    """Return the HTTP status carried by an error, if any."""
    for attr in ("status_code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    return None


def is_network_error(error: BaseException | None) -> bool:
    """
    Check if an error is a transient network failure that should be retried.

    Connection and timeout errors, messages carrying a network signal,
    a zero status (no HTTP response) and 5xx statuses are retryable.
    Everything else, including 4xx, is not.
    """
    if error is None:
        return False

    if isinstance(error, TRANSIENT_ERROR_TYPES):
        return True

    message = str(error)
    if any(signal in message for signal in NETWORK_ERROR_SIGNALS):
        return True

    status = _status_of(error)
    if status is not None and (status == 0 or status >= 500):
        return True

    return False


def calculate_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 10.0) -> float:
    """
    Exponential backoff with full jitter.

    Args:
        attempt: Current attempt number (0-indexed).
        base_delay: Base delay in seconds.
        max_delay: Upper bound for the delay in seconds.

    Returns:
        Delay in seconds, in ``[0, min(max_delay, base_delay * 2**attempt))``.
    """
    exponential_delay = base_delay * (2**attempt)
    return min(exponential_delay * random.random(), max_delay)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    should_retry: Callable[[BaseException], bool] = is_network_error,
    on_retry: Callable[[BaseException, int], None] | None = None,
) -> T:
    """
    Call ``fn`` until it succeeds, retrying transient failures with backoff.

    Args:
        fn: Zero-argument coroutine function to call.
        max_attempts: Maximum number of calls to ``fn``.
        base_delay: Base backoff delay in seconds.
        max_delay: Maximum backoff delay in seconds.
        should_retry: Decides whether an error is worth another attempt.
        on_retry: Called with ``(error, attempt_number)`` before each retry.

    Returns:
        The result of the first successful call.

    Raises:
        Exception: The first non-retryable error, or the last error once
            all attempts are used up.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return await fn()
        except Exception as e:
            if not should_retry(e) or attempt == max_attempts - 1:
                raise

            delay = calculate_backoff(attempt, base_delay, max_delay)

            if on_retry is not None:
                on_retry(e, attempt + 1)

            logger.warning(
                "Attempt %d failed, retrying in %.2fs: %s", attempt + 1, delay, e
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("retry_with_backoff exited without a result")

"""
Exponential backoff for rate-limited HTTP calls.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

import requests

from .exceptions import RateLimitError

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("too many requests", "limit of requests")


def is_rate_limited(exc: BaseException) -> bool:
    """
    Tell whether a failure is a rate limit and therefore worth retrying.

    Matches RateLimitError, an HTTP error with status 429, or an error whose
    message carries one of the known rate-limit phrases.
    """
    if isinstance(exc, RateLimitError):
        return True
    status = getattr(exc, "status_code", None)
    if status is None and isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
    if status == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_elapsed: Optional[float] = None,
    should_retry: Callable[[BaseException], bool] = is_rate_limited,
    logger: Optional[logging.Logger] = None,
    clock: Optional[Callable[[], float]] = None,
) -> T:
    """
    Run ``operation``, retrying rate-limited failures with exponential backoff.

    The n-th retry waits ``initial_delay * backoff_factor ** n`` seconds.

    Args:
        operation: Zero-argument coroutine function to call
        max_attempts: Total number of calls, including the first
        initial_delay: Delay before the first retry, in seconds
        backoff_factor: Multiplier applied to each successive delay
        max_elapsed: Upper bound on total time spent, in seconds
        should_retry: Classifier for transient failures
        logger: Optional logger instance
        clock: Monotonic time source

    Returns:
        The operation's result

    Raises:
        The last failure once attempts or time are exhausted, or the
        first non-transient failure immediately
    """
    log = logger or logging.getLogger(__name__)
    clock = clock or time.monotonic
    started = clock()
    delay = initial_delay
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if not should_retry(e):
                raise
            if attempt >= max_attempts:
                log.warning(f"Giving up after {attempt} attempts: {e}")
                raise
            if max_elapsed is not None and clock() - started + delay > max_elapsed:
                log.warning(f"Giving up after {clock() - started:.1f}s (limit {max_elapsed}s): {e}")
                raise
            log.info(f"Rate limited (attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay *= backoff_factor
            attempt += 1

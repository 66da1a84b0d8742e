"""Exponential backoff with jitter.

Retries on transient HTTP errors (429, 500, 502, 503, 504), connection
errors, and ``IdentityProviderError`` carrying one of those upstream
statuses. Respects Retry-After headers. Logs each retry attempt.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable

import httpx

from course_platform.errors import IdentityProviderError

logger = logging.getLogger(__name__)

# HTTP status codes that trigger a retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def _retryable(exc: Exception) -> tuple[bool, httpx.Response | None]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES, exc.response
    if isinstance(exc, IdentityProviderError):
        # None = transport failure inside the client
        return exc.upstream_status is None or exc.upstream_status in RETRYABLE_STATUS_CODES, None
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return True, None
    return False, None


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: float = 0.3,
) -> Callable:
    """Decorator: retry a function with exponential backoff + jitter.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay cap in seconds.
        jitter: Jitter factor (0.0-1.0). Adds randomness to prevent thundering herd.
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception = None
            for attempt in range(max_retries + 1):
                try:
                    return fn(*args, **kwargs)
                except (httpx.HTTPError, IdentityProviderError, ConnectionError) as e:
                    retryable, response = _retryable(e)
                    if not retryable or attempt == max_retries:
                        raise
                    last_exception = e
                    delay = _compute_delay(attempt, base_delay, max_delay, jitter, response)
                    logger.warning(
                        "Retry %d/%d for %s (%s), waiting %.1fs",
                        attempt + 1,
                        max_retries,
                        fn.__name__,
                        type(e).__name__,
                        delay,
                    )
                    time.sleep(delay)
            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator


def _compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: float,
    response: httpx.Response | None = None,
) -> float:
    """Compute delay with exponential backoff + jitter, respecting Retry-After."""
    if response is not None:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(float(retry_after), max_delay)
            except ValueError:
                pass

    # base * 2^attempt
    delay = min(base_delay * (2**attempt), max_delay)

    jitter_amount = delay * jitter
    delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)

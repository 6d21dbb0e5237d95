"""Exponential backoff for one-shot LLM calls (classification).

Streaming replies are never retried here: once tokens have been relayed to a
fan, replaying the request would duplicate text.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_HTTP_CODES = {429, 500, 502, 503, 504}
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)
# anthropic SDK errors, matched by class name
RETRYABLE_SDK_ERRORS = {
    "RateLimitError",
    "OverloadedError",
    "InternalServerError",
    "APIConnectionError",
    "APITimeoutError",
}


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2**attempt), max_delay)


def _retry_delay(exc: Exception, attempt: int, base_delay: float, max_delay: float) -> float | None:
    """Seconds to wait before the next attempt, or None if ``exc`` is permanent."""
    if isinstance(exc, RETRYABLE_EXCEPTIONS):
        return _backoff(attempt, base_delay, max_delay)
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code not in RETRYABLE_HTTP_CODES:
            return None
        retry_after = exc.response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), max_delay)
            except ValueError:
                pass
        return _backoff(attempt, base_delay, max_delay)
    if type(exc).__name__ in RETRYABLE_SDK_ERRORS:
        return _backoff(attempt, base_delay, max_delay)
    return None


async def retry_async(
    fn,
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    **kwargs,
):
    """Call an async function, retrying transient failures with backoff."""
    for attempt in range(max_retries + 1):
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:
            delay = _retry_delay(exc, attempt, base_delay, max_delay)
            if delay is None or attempt == max_retries:
                raise
            logger.warning(
                "Retry %d/%d after %s: %s (waiting %.1fs)",
                attempt + 1, max_retries, type(exc).__name__, exc, delay,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from email.utils import parsedate_to_datetime
from typing import TypeVar

import httpx
from pydantic_ai.exceptions import ModelHTTPError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestScheduler:
    """Gate for outbound provider requests.

    Bounds the number of in-flight requests, spaces request starts by
    `min_interval` seconds, and backs off further when a provider signals
    rate limiting through `penalize`.
    """

    def __init__(self, max_concurrency: int = 1, min_interval: float = 0.0):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.min_interval = min_interval
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._lock = asyncio.Lock()
        self._next_start = 0.0

    async def __aenter__(self) -> "RequestScheduler":
        await self._semaphore.acquire()
        try:
            await self._wait_for_slot()
        except BaseException:
            self._semaphore.release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._semaphore.release()

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            wait = self._next_start - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_start = time.monotonic() + self.min_interval

    def penalize(self, seconds: float) -> None:
        """Delay the next request start by at least `seconds` from now."""
        self._next_start = max(self._next_start, time.monotonic() + seconds)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, when.timestamp() - time.time())


def retry_after_seconds(error: BaseException) -> float | None:
    """Return the server-requested delay for a rate-limited (429) error."""
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 429:
            return _parse_retry_after(error.response.headers.get("retry-after"))
        return None

    if isinstance(error, ModelHTTPError) and error.status_code == 429:
        # The response headers are only reachable through the chained cause
        cause = error.__cause__
        response = getattr(cause, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            return _parse_retry_after(headers.get("retry-after"))
    return None


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    description: str,
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    scheduler: RequestScheduler | None = None,
) -> T:
    """Run `operation` until it succeeds or `max_attempts` is exhausted.

    After a failed attempt the loop sleeps `backoff_factor * 2**attempt`
    seconds, or the provider's Retry-After value on HTTP 429. No sleep
    follows the final attempt; its error is re-raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            if scheduler is None:
                return await operation()
            async with scheduler:
                return await operation()
        except Exception as e:
            logger.warning(
                "%s attempt %d/%d failed: %s", description, attempt, max_attempts, e
            )
            if attempt == max_attempts:
                raise

            delay = retry_after_seconds(e)
            if delay is None:
                delay = backoff_factor * 2**attempt
            elif scheduler is not None:
                scheduler.penalize(delay)
            if delay > 0:
                await asyncio.sleep(delay)

    raise AssertionError("unreachable")

import asyncio
import time

import httpx
import pytest
from pydantic_ai.exceptions import ModelHTTPError

from ktree.pipeline.ontology import scheduling
from ktree.pipeline.ontology.scheduling import (
    RequestScheduler,
    retry_after_seconds,
    retry_with_backoff,
)


@pytest.fixture
def sleeps(monkeypatch):
    """Record retry sleeps instead of waiting."""
    recorded: list[float] = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(scheduling.asyncio, "sleep", fake_sleep)
    return recorded


def rate_limited(retry_after: str | None = "7") -> httpx.HTTPStatusError:
    headers = {"Retry-After": retry_after} if retry_after else {}
    request = httpx.Request("POST", "https://api.example.com/v1/embeddings")
    response = httpx.Response(429, headers=headers, request=request)
    return httpx.HTTPStatusError("rate limited", request=request, response=response)


async def test_returns_first_success(sleeps):
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        return "ok"

    assert await retry_with_backoff(operation, "op") == "ok"
    assert calls == 1
    assert sleeps == []


async def test_exponential_backoff_then_success(sleeps):
    attempts = 0

    async def operation():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise RuntimeError("boom")
        return attempts

    assert await retry_with_backoff(operation, "op", max_attempts=3) == 3
    assert sleeps == [2.0, 4.0]


async def test_reraises_after_last_attempt_without_sleeping(sleeps):
    attempts = 0

    async def operation():
        nonlocal attempts
        attempts += 1
        raise RuntimeError(f"failure {attempts}")

    with pytest.raises(RuntimeError, match="failure 3"):
        await retry_with_backoff(operation, "op", max_attempts=3, backoff_factor=0.5)
    assert attempts == 3
    assert sleeps == [1.0, 2.0]


async def test_retry_after_overrides_backoff(sleeps):
    attempts = 0
    scheduler = RequestScheduler()

    async def operation():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise rate_limited("7")
        return "ok"

    assert await retry_with_backoff(operation, "op", scheduler=scheduler) == "ok"
    assert sleeps[0] == 7.0


def test_retry_after_seconds():
    assert retry_after_seconds(rate_limited("12")) == 12.0
    assert retry_after_seconds(rate_limited(None)) is None
    assert retry_after_seconds(RuntimeError("nope")) is None

    request = httpx.Request("GET", "https://example.com")
    server_error = httpx.HTTPStatusError(
        "boom", request=request, response=httpx.Response(500, request=request)
    )
    assert retry_after_seconds(server_error) is None


def test_retry_after_from_model_http_error():
    cause = rate_limited("5")
    try:
        try:
            raise cause
        except httpx.HTTPStatusError as e:
            raise ModelHTTPError(status_code=429, model_name="test") from e
    except ModelHTTPError as error:
        assert retry_after_seconds(error) == 5.0


async def test_invalid_max_attempts():
    async def operation():
        return None

    with pytest.raises(ValueError):
        await retry_with_backoff(operation, "op", max_attempts=0)


async def test_scheduler_bounds_concurrency():
    scheduler = RequestScheduler(max_concurrency=2)
    in_flight = 0
    peak = 0

    async def work():
        nonlocal in_flight, peak
        async with scheduler:
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

    await asyncio.gather(*(work() for _ in range(6)))
    assert peak == 2


async def test_scheduler_spaces_requests():
    scheduler = RequestScheduler(max_concurrency=4, min_interval=0.05)
    starts: list[float] = []

    async def work():
        async with scheduler:
            starts.append(time.monotonic())

    await asyncio.gather(*(work() for _ in range(3)))
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 0.04 for gap in gaps)


async def test_scheduler_penalize_delays_next_request():
    scheduler = RequestScheduler()
    scheduler.penalize(0.05)
    start = time.monotonic()
    async with scheduler:
        pass
    assert time.monotonic() - start >= 0.04


def test_scheduler_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        RequestScheduler(max_concurrency=0)

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from bridgecore.adapters.retry import BackoffPolicy, call_with_backoff, parse_retry_after
from bridgecore.domain.errors import TransportError


def _recording_sleep(sleeps: list[float]):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


def test_parse_retry_after() -> None:
    now = datetime(2015, 10, 21, 7, 27, 50, tzinfo=UTC)

    assert parse_retry_after("2.5") == 2.5
    assert parse_retry_after("-1") is None
    assert parse_retry_after("") is None
    assert parse_retry_after(None) is None
    assert parse_retry_after("not a date") is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 10.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0


def test_backoff_delay_is_bounded_and_honours_retry_after() -> None:
    policy = BackoffPolicy(base_delay_seconds=0.4, max_delay_seconds=4.0)

    assert 0.32 <= policy.delay_seconds(1) <= 0.48
    assert policy.delay_seconds(10) <= 4.0 * 1.2
    assert policy.delay_seconds(1, retry_after_seconds=30) == 4.0
    assert policy.delay_seconds(2) == policy.delay_seconds(2)


def test_retryable_transport_errors_are_retried_until_success() -> None:
    attempts: list[int] = []
    sleeps: list[float] = []

    async def _send() -> str:
        attempts.append(len(attempts) + 1)
        if len(attempts) < 3:
            raise TransportError("engine unavailable", status_code=503, retryable=True)
        return "ok"

    policy = BackoffPolicy(max_attempts=3, base_delay_seconds=0.1, max_delay_seconds=1.0)
    result = asyncio.run(call_with_backoff(_send, policy=policy, sleep_fn=_recording_sleep(sleeps)))

    assert result == "ok"
    assert attempts == [1, 2, 3]
    assert sleeps == [policy.delay_seconds(1), policy.delay_seconds(2)]


def test_engine_retry_after_overrides_backoff() -> None:
    sleeps: list[float] = []
    calls = {"count": 0}

    async def _send() -> str:
        calls["count"] += 1
        if calls["count"] == 1:
            raise TransportError("slow down", status_code=429, retryable=True, retry_after_seconds=1.5)
        return "ok"

    asyncio.run(call_with_backoff(_send, policy=BackoffPolicy(), sleep_fn=_recording_sleep(sleeps)))

    assert sleeps == [1.5]


def test_non_retryable_and_single_attempt_calls_raise_immediately() -> None:
    calls = {"count": 0}

    async def _rejected() -> None:
        calls["count"] += 1
        raise TransportError("bad request", status_code=400)

    async def _unavailable() -> None:
        calls["count"] += 1
        raise TransportError("engine unavailable", status_code=503, retryable=True)

    with pytest.raises(TransportError):
        asyncio.run(call_with_backoff(_rejected, policy=BackoffPolicy(max_attempts=5)))
    with pytest.raises(TransportError):
        asyncio.run(call_with_backoff(_unavailable, policy=BackoffPolicy(), max_attempts=1))

    assert calls["count"] == 2


def test_other_exceptions_are_not_retried() -> None:
    calls = {"count": 0}

    async def _broken() -> None:
        calls["count"] += 1
        raise ValueError("unexpected")

    with pytest.raises(ValueError):
        asyncio.run(call_with_backoff(_broken, policy=BackoffPolicy(max_attempts=3)))

    assert calls["count"] == 1


def test_zero_attempts_is_rejected() -> None:
    async def _send() -> None:
        return None

    with pytest.raises(ValueError):
        asyncio.run(call_with_backoff(_send, policy=BackoffPolicy(), max_attempts=0))

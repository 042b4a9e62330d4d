"""Backoff for engine requests that are safe to repeat.

Only quote and catalog reads go through ``call_with_backoff`` with more than one
attempt; order creation, status checks and emergency actions are sent once.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TypeVar

from bridgecore.domain.errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 0.4
    max_delay_seconds: float = 4.0
    jitter_seed: int = 17

    def delay_seconds(self, attempt: int, retry_after_seconds: float | None = None) -> float:
        """Delay before retry number ``attempt``; an engine Retry-After wins, capped."""
        if retry_after_seconds is not None:
            return min(self.max_delay_seconds, retry_after_seconds)
        attempt = max(1, attempt)
        ceiling = min(self.max_delay_seconds, self.base_delay_seconds * 2 ** (attempt - 1))
        jitter = random.Random(self.jitter_seed + attempt).uniform(0.8, 1.2)
        return ceiling * jitter


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    text = (value or "").strip()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None:
        return seconds if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or datetime.now(UTC))).total_seconds())


async def call_with_backoff(  # noqa: UP047
    send: Callable[[], Awaitable[T]],
    *,
    policy: BackoffPolicy,
    max_attempts: int | None = None,
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempts = policy.max_attempts if max_attempts is None else max_attempts
    if attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return await send()
        except TransportError as exc:
            if not exc.retryable or attempt >= attempts:
                raise
            delay = policy.delay_seconds(attempt, exc.retry_after_seconds)
            logger.info(
                "bridge_request_retry",
                extra={
                    "extra": {
                        "path": exc.request_path,
                        "status_code": exc.status_code,
                        "attempt": attempt,
                        "delay_s": round(delay, 3),
                    }
                },
            )
            await sleep_fn(delay)
            attempt += 1

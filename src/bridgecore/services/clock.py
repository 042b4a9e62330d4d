from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

SleepFn = Callable[[float], Awaitable[None]]


class Clock(Protocol):
    def now_ms(self) -> int: ...


class SystemClock:
    @staticmethod
    def now_ms() -> int:
        return int(datetime.now(UTC).timestamp() * 1000)

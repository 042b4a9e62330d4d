from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from bridgecore.services.clock import SleepFn

logger = logging.getLogger(__name__)


class TimerScopeClosedError(RuntimeError):
    """Raised when a timer is started on a scope that has been torn down."""


class TimerScope:
    """Owns the named timer tasks of one view.

    Starting a timer under a name already in use cancels the previous one, and
    ``aclose`` cancels and awaits everything, so no timer outlives its view.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._closed = False

    async def __aenter__(self) -> TimerScope:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        if self._closed:
            coro.close()
            raise TimerScopeClosedError(f"timer scope {self.name} is closed")
        previous = self._tasks.get(key)
        if previous is not None and previous is not asyncio.current_task():
            previous.cancel()
        task = asyncio.create_task(coro, name=f"{self.name}:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda done, key=key: self._forget(key, done))
        return task

    def start_after(
        self,
        key: str,
        delay_ms: int,
        callback: Callable[[], Awaitable[None]],
        *,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> asyncio.Task[Any]:
        async def _delayed() -> None:
            await sleep_fn(delay_ms / 1000)
            await callback()

        return self.start(key, _delayed())

    def get(self, key: str) -> asyncio.Task[Any] | None:
        return self._tasks.get(key)

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            return False
        task.cancel()
        return True

    async def cancel_all(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in self._tasks.values() if task is not current]
        self._tasks.clear()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        self._closed = True
        await self.cancel_all()
        logger.debug("timer_scope_closed", extra={"extra": {"scope": self.name}})

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "timer_task_failed",
                extra={"extra": {"scope": self.name, "timer": key}},
                exc_info=(type(exc), exc, exc.__traceback__),
            )

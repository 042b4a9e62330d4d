from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from typing import TypeVar

from bridgecore.domain.errors import StorageError
from bridgecore.domain.models import CompletedTransaction, OrderSession
from bridgecore.persistence.uow import UnitOfWork, UnitOfWorkFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run_in_uow(  # noqa: UP047
    factory: UnitOfWorkFactory, operation: str, fn: Callable[[UnitOfWork], T]
) -> T:
    def _work() -> T:
        with factory() as uow:
            return fn(uow)

    try:
        return await asyncio.to_thread(_work)
    except (sqlite3.Error, PermissionError) as exc:
        logger.error(
            "store_operation_failed",
            extra={"extra": {"operation": operation, "db_path": factory.db_path}},
            exc_info=True,
        )
        raise StorageError(f"{operation} failed: {exc}") from exc


class SqliteCompletedTransactionStore:
    def __init__(self, factory: UnitOfWorkFactory) -> None:
        self._factory = factory

    async def put(self, record: CompletedTransaction) -> bool:
        return await _run_in_uow(
            self._factory, "completed_put", lambda uow: uow.completed.put(record)
        )

    async def get(self, order_id: str) -> CompletedTransaction | None:
        return await _run_in_uow(
            self._factory, "completed_get", lambda uow: uow.completed.get(order_id)
        )


class SqliteSessionStore:
    def __init__(self, factory: UnitOfWorkFactory) -> None:
        self._factory = factory

    async def save(self, session: OrderSession) -> None:
        await _run_in_uow(self._factory, "session_save", lambda uow: uow.session.save(session))

    async def load(self) -> OrderSession | None:
        return await _run_in_uow(self._factory, "session_load", lambda uow: uow.session.load())

    async def clear(self) -> None:
        await _run_in_uow(self._factory, "session_clear", lambda uow: uow.session.clear())

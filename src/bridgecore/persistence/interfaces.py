from __future__ import annotations

from typing import Protocol

from bridgecore.domain.models import CompletedTransaction, OrderSession


class CompletedTransactionStore(Protocol):
    async def put(self, record: CompletedTransaction) -> bool: ...

    async def get(self, order_id: str) -> CompletedTransaction | None: ...


class SessionStore(Protocol):
    async def save(self, session: OrderSession) -> None: ...

    async def load(self) -> OrderSession | None: ...

    async def clear(self) -> None: ...

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from bridgecore.domain.errors import StorageError
from bridgecore.domain.models import CompletedTransaction, DerivedStatus, OrderSession
from bridgecore.persistence.interfaces import CompletedTransactionStore
from bridgecore.security.redaction import sanitize_mapping
from bridgecore.services.clock import Clock

logger = logging.getLogger(__name__)


class SaveState(StrEnum):
    PENDING = "pending"
    SAVING = "saving"
    SAVED = "saved"


class SaveOutcome(StrEnum):
    SAVED = "saved"
    ALREADY_SAVED = "already_saved"
    FAILED = "failed"


class CompletionRecorder:
    """At-most-once writer of the completed record for the loaded order.

    Live polling, the simulated override and reconciliation all funnel through
    ``save``; only the caller that moves the state out of PENDING writes.
    """

    def __init__(
        self,
        store: CompletedTransactionStore,
        *,
        clock: Clock,
        on_completed: Callable[[CompletedTransaction], None] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._on_completed = on_completed
        self._order_id: str | None = None
        self._state = SaveState.PENDING
        self._write: asyncio.Task[SaveOutcome] | None = None

    @property
    def order_id(self) -> str | None:
        return self._order_id

    @property
    def state(self) -> SaveState:
        return self._state

    def is_saved(self, order_id: str) -> bool:
        return self._order_id == order_id and self._state is SaveState.SAVED

    def reset(self, order_id: str | None) -> None:
        self._order_id = order_id
        self._state = SaveState.PENDING

    async def save(
        self,
        session: OrderSession,
        payload: Mapping[str, Any],
        *,
        is_simulated: bool = False,
        debug_info: Any | None = None,
    ) -> SaveOutcome:
        if session.order_id != self._order_id:
            self.reset(session.order_id)
        while self._state is SaveState.SAVING and self._write is not None and not self._write.done():
            await asyncio.wait({self._write})
            if session.order_id != self._order_id:
                return SaveOutcome.ALREADY_SAVED

        # read and set with no await in between
        if self._state is not SaveState.PENDING:
            logger.debug(
                "completion_save_skipped",
                extra={"extra": {"order_id": session.order_id, "state": self._state.value}},
            )
            return SaveOutcome.ALREADY_SAVED
        self._state = SaveState.SAVING

        record = self._build_record(session, payload, is_simulated=is_simulated, debug_info=debug_info)
        self._write = asyncio.create_task(self._write_record(record, is_simulated=is_simulated))
        # the write outlives a cancelled caller
        return await asyncio.shield(self._write)

    async def _write_record(self, record: CompletedTransaction, *, is_simulated: bool) -> SaveOutcome:
        order_id = record.order_id
        try:
            inserted = await self._store.put(record)
        except StorageError:
            if self._order_id == order_id:
                self._state = SaveState.PENDING
            logger.warning(
                "completion_save_failed",
                extra={"extra": {"order_id": order_id, "is_simulated": is_simulated}},
                exc_info=True,
            )
            return SaveOutcome.FAILED
        except asyncio.CancelledError:
            if self._order_id == order_id:
                self._state = SaveState.PENDING
            raise

        if self._order_id != order_id:
            # a different order was loaded while the write was in flight
            return SaveOutcome.SAVED if inserted else SaveOutcome.ALREADY_SAVED

        self._state = SaveState.SAVED
        logger.info(
            "completion_saved",
            extra={
                "extra": {
                    "order_id": order_id,
                    "inserted": inserted,
                    "is_simulated": is_simulated,
                }
            },
        )
        if self._on_completed is not None:
            self._on_completed(record)
        return SaveOutcome.SAVED if inserted else SaveOutcome.ALREADY_SAVED

    def _build_record(
        self,
        session: OrderSession,
        payload: Mapping[str, Any],
        *,
        is_simulated: bool,
        debug_info: Any | None,
    ) -> CompletedTransaction:
        raw_response = dict(payload)
        if is_simulated:
            raw_response.setdefault("original_status", raw_response.get("status"))
            raw_response["status"] = "DONE"
            raw_response["simulated"] = True

        metadata: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(self._clock.now_ms() / 1000, tz=UTC).isoformat(),
            "is_simulated": is_simulated,
        }
        if debug_info is not None:
            metadata["debug_info"] = (
                sanitize_mapping(debug_info) if isinstance(debug_info, Mapping) else debug_info
            )

        return CompletedTransaction(
            order_id=session.order_id,
            order_token=session.order_token,
            from_currency=session.from_currency,
            to_currency=session.to_currency,
            amount=session.send_amount,
            destination_address=session.destination_address,
            deposit_address=session.deposit_address,
            status=DerivedStatus.COMPLETED.value,
            raw_response=raw_response,
            client_metadata=metadata,
        )

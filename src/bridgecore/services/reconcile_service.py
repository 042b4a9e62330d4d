from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from bridgecore.domain.errors import StorageError
from bridgecore.domain.models import DerivedStatus, OrderSession, RawStatus, StatusSnapshot
from bridgecore.persistence.interfaces import CompletedTransactionStore
from bridgecore.services.clock import Clock
from bridgecore.services.completion_recorder import CompletionRecorder
from bridgecore.services.timers import TimerScope

logger = logging.getLogger(__name__)

RECONCILE_TIMEOUT_MS = 3_000


class ExpiredOrderReconciler:
    """Resolves an engine-reported expiry against the durable completed record.

    A completion can race with the poller's last observation, so an EXPIRED read
    is checked once per order against the store before it is shown as final.
    """

    TIMER_KEY = "reconcile"

    def __init__(
        self,
        store: CompletedTransactionStore,
        recorder: CompletionRecorder,
        *,
        timers: TimerScope,
        clock: Clock,
        timeout_ms: int = RECONCILE_TIMEOUT_MS,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._timers = timers
        self._clock = clock
        self.timeout_ms = timeout_ms
        self._attempted: set[str] = set()
        self._in_flight: str | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def was_attempted(self, order_id: str) -> bool:
        return order_id in self._attempted

    def maybe_start(
        self,
        snapshot: StatusSnapshot,
        session: OrderSession | None = None,
        on_resolved: Callable[[StatusSnapshot], None] | None = None,
    ) -> bool:
        if snapshot.derived_status is not DerivedStatus.EXPIRED:
            return False
        order_id = snapshot.order_id
        if order_id in self._attempted or self._in_flight is not None:
            return False
        self._attempted.add(order_id)
        self._in_flight = order_id
        task = self._timers.start(
            self.TIMER_KEY, self.reconcile(snapshot, session, on_resolved=on_resolved)
        )
        # also runs when the task is cancelled before its first step
        task.add_done_callback(lambda _: self._clear_in_flight(order_id))
        return True

    async def reconcile(
        self,
        snapshot: StatusSnapshot,
        session: OrderSession | None = None,
        *,
        on_resolved: Callable[[StatusSnapshot], None] | None = None,
    ) -> StatusSnapshot:
        order_id = snapshot.order_id
        self._attempted.add(order_id)
        self._in_flight = order_id
        try:
            async with asyncio.timeout(self.timeout_ms / 1000):
                record = await self._store.get(order_id)
        except TimeoutError:
            logger.warning(
                "reconcile_timed_out",
                extra={"extra": {"order_id": order_id, "timeout_ms": self.timeout_ms}},
            )
            return snapshot
        except StorageError:
            logger.warning("reconcile_store_failed", extra={"extra": {"order_id": order_id}}, exc_info=True)
            return snapshot
        finally:
            self._clear_in_flight(order_id)

        if record is None:
            logger.info("reconcile_no_record", extra={"extra": {"order_id": order_id}})
            return snapshot

        resolved = StatusSnapshot(
            order_id=order_id,
            raw_status=RawStatus.DONE,
            derived_status=DerivedStatus.COMPLETED,
            observed_at_ms=self._clock.now_ms(),
            payload=dict(record.raw_response),
            reconciled=True,
        )
        logger.info("reconcile_found_completed", extra={"extra": {"order_id": order_id}})
        if on_resolved is not None:
            on_resolved(resolved)
        if session is not None and session.order_id == order_id:
            await self._recorder.save(session, resolved.payload)
        return resolved

    def _clear_in_flight(self, order_id: str) -> None:
        if self._in_flight == order_id:
            self._in_flight = None

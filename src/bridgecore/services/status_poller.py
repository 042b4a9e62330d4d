from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from bridgecore.adapters.bridge_api import BridgeApi, envelope_code, envelope_ok
from bridgecore.domain.errors import BridgeError, TransportError
from bridgecore.domain.models import (
    DerivedStatus,
    OrderSession,
    RawStatus,
    StatusSnapshot,
)
from bridgecore.domain.polling_policy import poll_interval_ms
from bridgecore.logging_context import with_logging_context
from bridgecore.services.clock import Clock, SleepFn
from bridgecore.services.completion_recorder import CompletionRecorder, SaveOutcome
from bridgecore.services.reconcile_service import ExpiredOrderReconciler
from bridgecore.services.timers import TimerScope

logger = logging.getLogger(__name__)


class StatusPoller:
    """Tracks one order's settlement status on the fixed polling policy.

    The live raw status drives scheduling. The displayed snapshot may be an
    override (reconciled or simulated completion) that later live reads do not
    regress.
    """

    TIMER_KEY = "status_poll"

    def __init__(
        self,
        api: BridgeApi,
        *,
        recorder: CompletionRecorder,
        timers: TimerScope,
        clock: Clock,
        reconciler: ExpiredOrderReconciler | None = None,
        on_snapshot: Callable[[StatusSnapshot], None] | None = None,
        on_error: Callable[[BridgeError], None] | None = None,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self._api = api
        self._recorder = recorder
        self._timers = timers
        self._clock = clock
        self._reconciler = reconciler
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._sleep_fn = sleep_fn

        self.session: OrderSession | None = None
        self.snapshot: StatusSnapshot | None = None
        self.last_error: BridgeError | None = None
        self.last_debug_info: Any | None = None
        self._live_status: RawStatus | None = None
        self._override = False
        self._last_attempt_ms: int | None = None
        self._attempt_seq = 0
        self._applied_seq = 0

    @property
    def live_status(self) -> RawStatus | None:
        return self._live_status

    @property
    def running(self) -> bool:
        return self._timers.is_running(self.TIMER_KEY)

    def current_interval_ms(self) -> int | None:
        if self.session is None or self._live_status is None:
            return None
        return poll_interval_ms(self._live_status)

    async def track(self, session: OrderSession) -> None:
        await self.start(session)

    async def start(self, session: OrderSession) -> None:
        self.stop()
        self.session = session
        self.snapshot = None
        self.last_error = None
        self.last_debug_info = None
        self._live_status = session.status
        self._override = False
        self._last_attempt_ms = None
        self._applied_seq = self._attempt_seq
        self._recorder.reset(session.order_id)
        logger.info(
            "status_polling_started",
            extra={"extra": {"order_id": session.order_id, "status": session.status.value}},
        )
        await self.tick(force=True)
        self._ensure_loop()

    def stop(self) -> None:
        self._timers.cancel(self.TIMER_KEY)

    async def tick(self, force: bool = False) -> StatusSnapshot | None:
        session = self.session
        if session is None:
            return None
        interval = self.current_interval_ms()
        if interval is None and not force:
            return None
        now = self._clock.now_ms()
        if (
            not force
            and self._last_attempt_ms is not None
            and interval is not None
            and now - self._last_attempt_ms < interval
        ):
            return None

        self._last_attempt_ms = now
        self._attempt_seq += 1
        seq = self._attempt_seq

        with with_logging_context(order_id=session.order_id):
            try:
                payload = await self._api.check_order_status(session.order_id, session.order_token)
            except TransportError as exc:
                if self.session is session:
                    self._record_failure(exc)
                return None
            return await self._handle_response(session, seq, payload, force=force)

    async def _handle_response(
        self, session: OrderSession, seq: int, payload: dict[str, Any], *, force: bool
    ) -> StatusSnapshot | None:
        if self.session is not session:
            logger.info("status_response_for_replaced_order_discarded")
            return None

        if isinstance(payload, dict) and payload.get("debugInfo") is not None:
            self.last_debug_info = payload["debugInfo"]

        if not envelope_ok(payload) or not isinstance(payload.get("data"), dict):
            message = payload.get("msg") if isinstance(payload, dict) else None
            self._record_failure(
                TransportError(f"Status check declined code={envelope_code(payload)}: {message or 'no data'}")
            )
            return None

        data = payload["data"]
        response_id = data.get("id")
        if response_id is None or str(response_id) != session.order_id:
            logger.warning(
                "status_response_order_mismatch",
                extra={"extra": {"response_order_id": response_id}},
            )
            return None
        if seq < self._applied_seq:
            logger.info("status_response_stale_discarded", extra={"extra": {"attempt": seq}})
            return None

        try:
            snapshot = StatusSnapshot.from_payload(
                session.order_id, data, observed_at_ms=self._clock.now_ms()
            )
        except ValueError:
            self._record_failure(TransportError(f"Unknown order status {data.get('status')!r}"))
            return None

        self._applied_seq = seq
        self._live_status = snapshot.raw_status
        self.last_error = None
        await self._apply(session, snapshot)

        if self.current_interval_ms() is None:
            self.stop()
        elif force:
            self._ensure_loop()
        return snapshot

    async def _apply(self, session: OrderSession, snapshot: StatusSnapshot) -> None:
        keep_override = (
            self._override
            and self.snapshot is not None
            and self.snapshot.derived_status is DerivedStatus.COMPLETED
            and snapshot.raw_status is not RawStatus.DONE
        )
        if not keep_override:
            self._override = False
            self._publish(snapshot)

        if snapshot.raw_status is RawStatus.DONE and not self._recorder.is_saved(session.order_id):
            await self._recorder.save(session, snapshot.payload, debug_info=self.last_debug_info)
        if snapshot.derived_status is DerivedStatus.EXPIRED and self._reconciler is not None:
            self._reconciler.maybe_start(snapshot, session, on_resolved=self.apply_reconciled)

    def apply_reconciled(self, snapshot: StatusSnapshot) -> None:
        """Show a reconciled completion without touching the live polling state."""
        if self.session is None or snapshot.order_id != self.session.order_id:
            return
        self._override = True
        self._publish(snapshot)

    async def simulate_completion(self) -> SaveOutcome | None:
        session = self.session
        if session is None:
            return None
        original = self._live_status or session.status
        base = dict(self.snapshot.payload) if self.snapshot is not None else {}
        base.setdefault("id", session.order_id)
        base["status"] = original.value

        self.stop()
        self._override = True
        self._publish(
            StatusSnapshot(
                order_id=session.order_id,
                raw_status=RawStatus.DONE,
                derived_status=DerivedStatus.COMPLETED,
                observed_at_ms=self._clock.now_ms(),
                payload={
                    **base,
                    "status": RawStatus.DONE.value,
                    "simulated": True,
                    "original_status": original.value,
                },
            )
        )
        logger.info(
            "status_completion_simulated",
            extra={"extra": {"order_id": session.order_id, "original_status": original.value}},
        )
        return await self._recorder.save(
            session, base, is_simulated=True, debug_info=self.last_debug_info
        )

    def _ensure_loop(self) -> None:
        if self._timers.closed or self.running or self.current_interval_ms() is None:
            return
        self._timers.start(self.TIMER_KEY, self._run())

    async def _run(self) -> None:
        while True:
            interval = self.current_interval_ms()
            if interval is None:
                return
            last = self._last_attempt_ms
            elapsed = interval if last is None else self._clock.now_ms() - last
            wait_ms = max(0, interval - elapsed)
            if wait_ms:
                await self._sleep_fn(wait_ms / 1000)
            await self.tick()

    def _record_failure(self, exc: BridgeError) -> None:
        self.last_error = exc
        logger.warning(
            "status_check_failed",
            extra={"extra": {"error": str(exc), "status_code": getattr(exc, "status_code", None)}},
        )
        if self._on_error is not None:
            self._on_error(exc)

    def _publish(self, snapshot: StatusSnapshot) -> None:
        self.snapshot = snapshot
        if self._on_snapshot is not None:
            self._on_snapshot(snapshot)

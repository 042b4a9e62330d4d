from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from bridgecore.adapters.bridge_api import BridgeApi, envelope_ok
from bridgecore.domain.errors import (
    ActionError,
    BridgeError,
    QuoteError,
    StorageError,
    TransportError,
    ValidationError,
)
from bridgecore.domain.models import (
    CompletedTransaction,
    Currency,
    OrderSession,
    OrderType,
    Quote,
    StatusSnapshot,
    select_default_pair,
)
from bridgecore.logging_context import bind_order_context, with_logging_context
from bridgecore.persistence.interfaces import CompletedTransactionStore, SessionStore
from bridgecore.services.amount_validator import AmountCheck, validate_amount
from bridgecore.services.clock import Clock, SleepFn, SystemClock
from bridgecore.services.completion_recorder import CompletionRecorder
from bridgecore.services.emergency_service import (
    EMERGENCY_FOLLOWUP_DELAY_MS,
    EmergencyActionHandler,
    EmergencyChoice,
)
from bridgecore.services.order_service import OrderCreator, OrderRequest
from bridgecore.services.quote_service import (
    COUNTDOWN_INTERVAL_MS,
    QUOTE_VALIDITY_MS,
    RECALCULATION_THROTTLE_MS,
    QuoteCalculator,
    QuoteCountdown,
)
from bridgecore.services.reconcile_service import RECONCILE_TIMEOUT_MS, ExpiredOrderReconciler
from bridgecore.services.status_poller import StatusPoller
from bridgecore.services.timers import TimerScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputChanged:
    from_currency: str | None = None
    to_currency: str | None = None
    amount: str | None = None
    destination_address: str | None = None
    order_type: OrderType | None = None


@dataclass(frozen=True)
class QuoteRefreshRequested:
    pass


@dataclass(frozen=True)
class OrderSubmitted:
    pass


@dataclass(frozen=True)
class StatusCheckRequested:
    pass


@dataclass(frozen=True)
class ViewFocused:
    pass


@dataclass(frozen=True)
class EmergencyRequested:
    choice: EmergencyChoice
    refund_address: str | None = None


@dataclass(frozen=True)
class CompletionSimulated:
    pass


@dataclass(frozen=True)
class ViewClosed:
    pass


BridgeEvent = (
    InputChanged
    | QuoteRefreshRequested
    | OrderSubmitted
    | StatusCheckRequested
    | ViewFocused
    | EmergencyRequested
    | CompletionSimulated
    | ViewClosed
)


class BridgeListener:
    """Receives the coordinator's notifications; every hook defaults to a no-op."""

    def on_quote(self, quote: Quote | None) -> None:
        pass

    def on_quote_error(self, error: QuoteError) -> None:
        pass

    def on_countdown(self, display: str | None) -> None:
        pass

    def on_amount_check(self, check: AmountCheck) -> None:
        pass

    def on_order_created(self, session: OrderSession) -> None:
        pass

    def on_order_error(self, error: BridgeError) -> None:
        pass

    def on_status(self, snapshot: StatusSnapshot) -> None:
        pass

    def on_transient_error(self, error: BridgeError) -> None:
        pass

    def on_action_error(self, error: BridgeError) -> None:
        pass

    def on_completed(self, record: CompletedTransaction) -> None:
        pass


@dataclass
class BridgeInputs:
    from_currency: str = ""
    to_currency: str = ""
    amount: str = ""
    destination_address: str = ""
    order_type: OrderType = OrderType.FIXED


class BridgeSession:
    """Coordinator for one order view.

    Events are consumed in arrival order by ``run``; the quote countdown lives in
    the quote timer scope and everything tied to the tracked order (poll loop,
    reconciliation, emergency follow-up) lives in the order timer scope.
    """

    def __init__(
        self,
        api: BridgeApi,
        *,
        completed_store: CompletedTransactionStore,
        session_store: SessionStore,
        clock: Clock | None = None,
        listener: BridgeListener | None = None,
        sleep_fn: SleepFn = asyncio.sleep,
        quote_validity_ms: int = QUOTE_VALIDITY_MS,
        countdown_interval_ms: int = COUNTDOWN_INTERVAL_MS,
        recalculation_throttle_ms: int = RECALCULATION_THROTTLE_MS,
        reconcile_timeout_ms: int = RECONCILE_TIMEOUT_MS,
        emergency_followup_delay_ms: int = EMERGENCY_FOLLOWUP_DELAY_MS,
        default_order_type: OrderType = OrderType.FIXED,
        closers: Sequence[Callable[[], Awaitable[None]]] = (),
        session_id: str | None = None,
    ) -> None:
        self._api = api
        self._session_store = session_store
        self.clock = clock or SystemClock()
        self.listener = listener or BridgeListener()
        self.session_id = session_id or uuid4().hex
        self._closers = list(closers)
        self._queue: asyncio.Queue[BridgeEvent] = asyncio.Queue()
        self._closed = False

        self.inputs = BridgeInputs(order_type=default_order_type)
        self.quote_timers = TimerScope("quote")
        self.order_timers = TimerScope("order")

        self.countdown = QuoteCountdown(
            clock=self.clock,
            timers=self.quote_timers,
            on_tick=self.listener.on_countdown,
            interval_ms=countdown_interval_ms,
            sleep_fn=sleep_fn,
        )
        self.quotes = QuoteCalculator(
            api,
            clock=self.clock,
            countdown=self.countdown,
            on_quote=self._on_quote,
            validity_ms=quote_validity_ms,
            throttle_ms=recalculation_throttle_ms,
        )
        self.recorder = CompletionRecorder(
            completed_store, clock=self.clock, on_completed=self.listener.on_completed
        )
        self.reconciler = ExpiredOrderReconciler(
            completed_store,
            self.recorder,
            timers=self.order_timers,
            clock=self.clock,
            timeout_ms=reconcile_timeout_ms,
        )
        self.poller = StatusPoller(
            api,
            recorder=self.recorder,
            timers=self.order_timers,
            clock=self.clock,
            reconciler=self.reconciler,
            on_snapshot=self.listener.on_status,
            on_error=self.listener.on_transient_error,
            sleep_fn=sleep_fn,
        )
        self.emergency = EmergencyActionHandler(
            api,
            timers=self.order_timers,
            followup=self._forced_status_check,
            delay_ms=emergency_followup_delay_ms,
            sleep_fn=sleep_fn,
        )
        self.orders = OrderCreator(
            api,
            quotes=self.quotes,
            session_store=session_store,
            clock=self.clock,
            tracker=self,
        )

    async def __aenter__(self) -> BridgeSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def order(self) -> OrderSession | None:
        return self.poller.session

    def post(self, event: BridgeEvent) -> None:
        self._queue.put_nowait(event)

    async def run(self) -> None:
        with with_logging_context(session_id=self.session_id):
            while not self._closed:
                event = await self._queue.get()
                try:
                    if isinstance(event, ViewClosed):
                        await self.close()
                        return
                    await self.dispatch(event)
                except Exception:
                    logger.exception(
                        "bridge_event_failed",
                        extra={"extra": {"event": type(event).__name__}},
                    )
                finally:
                    self._queue.task_done()

    async def dispatch(self, event: BridgeEvent) -> None:
        match event:
            case InputChanged():
                self._apply_inputs(event)
                self.listener.on_amount_check(validate_amount(self.inputs.amount, self.quotes.current))
                await self._calculate(force=False)
            case QuoteRefreshRequested():
                await self._calculate(force=True)
            case OrderSubmitted():
                await self.submit_order()
            case StatusCheckRequested():
                await self.poller.tick(force=True)
            case ViewFocused():
                await self.poller.tick()
            case EmergencyRequested(choice=choice, refund_address=address):
                await self.request_emergency(choice, address)
            case CompletionSimulated():
                await self.poller.simulate_completion()
            case ViewClosed():
                await self.close()

    async def submit_order(self) -> OrderSession | None:
        request = OrderRequest(
            from_currency=self.inputs.from_currency,
            to_currency=self.inputs.to_currency,
            amount=self.inputs.amount,
            destination_address=self.inputs.destination_address,
            order_type=self.inputs.order_type,
        )
        try:
            return await self.orders.create(request)
        except BridgeError as exc:
            logger.info(
                "order_submission_rejected",
                extra={"extra": {"error": type(exc).__name__, "detail": str(exc)}},
            )
            self.listener.on_order_error(exc)
            return None

    async def request_emergency(
        self, choice: EmergencyChoice | str, refund_address: str | None = None
    ) -> None:
        session = self.poller.session
        if session is None:
            self.listener.on_action_error(ValidationError("No order is being tracked"))
            return
        try:
            await self.emergency.perform(choice, session.order_id, session.order_token, refund_address)
        except (ValidationError, ActionError) as exc:
            self.listener.on_action_error(exc)

    async def track(self, session: OrderSession) -> None:
        """Switch the view to ``session``, dropping every timer of the previous order."""
        await self.order_timers.cancel_all()
        self.emergency.reset()
        bind_order_context(
            session.order_id,
            order_token=session.order_token,
            from_currency=session.from_currency,
            to_currency=session.to_currency,
        )
        self.listener.on_order_created(session)
        await self.poller.start(session)

    async def resume(self) -> OrderSession | None:
        try:
            session = await self._session_store.load()
        except StorageError:
            logger.warning("session_resume_failed", exc_info=True)
            return None
        if session is None:
            return None
        logger.info("session_resumed", extra={"extra": {"order_id": session.order_id}})
        self.inputs = BridgeInputs(
            from_currency=session.from_currency,
            to_currency=session.to_currency,
            amount=str(session.send_amount),
            destination_address=session.destination_address,
            order_type=session.order_type,
        )
        await self.track(session)
        return session

    async def load_default_pair(self) -> tuple[str, str] | None:
        """Pre-select the default currency pair from the engine's catalog."""
        try:
            payload = await self._api.fetch_currencies()
        except TransportError:
            logger.warning("currency_catalog_unavailable", exc_info=True)
            return None
        if not envelope_ok(payload) or not isinstance(payload["data"], list):
            return None
        try:
            currencies = [Currency.model_validate(item) for item in payload["data"]]
        except PydanticValidationError:
            logger.warning("currency_catalog_malformed")
            return None
        pair = select_default_pair(currencies)
        if pair is not None and not self.inputs.from_currency and not self.inputs.to_currency:
            self.inputs.from_currency, self.inputs.to_currency = pair
        return pair

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.quote_timers.aclose()
        await self.order_timers.aclose()
        for closer in self._closers:
            await closer()
        logger.info("bridge_session_closed", extra={"extra": {"session_id": self.session_id}})

    def _apply_inputs(self, event: InputChanged) -> None:
        if event.from_currency is not None:
            self.inputs.from_currency = event.from_currency
        if event.to_currency is not None:
            self.inputs.to_currency = event.to_currency
        if event.amount is not None:
            self.inputs.amount = event.amount
        if event.destination_address is not None:
            self.inputs.destination_address = event.destination_address
        if event.order_type is not None:
            self.inputs.order_type = event.order_type

    async def _calculate(self, *, force: bool) -> None:
        try:
            await self.quotes.calculate(
                self.inputs.from_currency,
                self.inputs.to_currency,
                self.inputs.amount,
                self.inputs.order_type,
                force=force,
            )
        except QuoteError as exc:
            self.listener.on_quote_error(exc)

    def _on_quote(self, quote: Quote | None) -> None:
        self.listener.on_quote(quote)
        if quote is not None:
            self.listener.on_amount_check(validate_amount(self.inputs.amount, quote))

    async def _forced_status_check(self) -> None:
        await self.poller.tick(force=True)

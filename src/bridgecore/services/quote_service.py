from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from bridgecore.adapters.bridge_api import BridgeApi, envelope_code, envelope_ok
from bridgecore.domain.errors import QuoteError, TransportError
from bridgecore.domain.models import OrderType, Quote, try_parse_decimal
from bridgecore.services.clock import Clock, SleepFn
from bridgecore.services.timers import TimerScope

logger = logging.getLogger(__name__)

QUOTE_VALIDITY_MS = 120_000
COUNTDOWN_INTERVAL_MS = 1_000
RECALCULATION_THROTTLE_MS = 120_000

QuoteKey = tuple[str, str, Decimal, OrderType]


class _PriceLeg(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Decimal | None = None
    min: Decimal | None = None
    max: Decimal | None = None


class _PriceData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    from_: _PriceLeg = Field(alias="from")
    to: _PriceLeg
    rate: Decimal | None = None


def format_remaining(remaining_ms: int) -> str:
    """Render milliseconds as seconds with a two-digit fraction, e.g. ``"119.99"``."""
    remaining_ms = max(0, remaining_ms)
    return f"{remaining_ms // 1000}.{(remaining_ms % 1000) // 10:02d}"


class QuoteCountdown:
    """Once-per-interval countdown to the active quote's expiry."""

    TIMER_KEY = "quote_countdown"

    def __init__(
        self,
        *,
        clock: Clock,
        timers: TimerScope,
        on_tick: Callable[[str | None], None] | None = None,
        interval_ms: int = COUNTDOWN_INTERVAL_MS,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._timers = timers
        self._on_tick = on_tick
        self._interval_ms = interval_ms
        self._sleep_fn = sleep_fn
        self._expires_at_ms: int | None = None
        self.display: str | None = None

    @property
    def running(self) -> bool:
        return self._timers.is_running(self.TIMER_KEY)

    def restart(self, quote: Quote) -> None:
        self._expires_at_ms = quote.expires_at_ms
        if self.tick():
            self._timers.start(self.TIMER_KEY, self._run())

    def stop(self) -> None:
        self._timers.cancel(self.TIMER_KEY)
        self._expires_at_ms = None
        self._publish(None)

    def tick(self) -> bool:
        """Refresh the display; returns False once the quote has lapsed."""
        if self._expires_at_ms is None:
            self._publish(None)
            return False
        remaining = max(0, self._expires_at_ms - self._clock.now_ms())
        if remaining <= 0:
            self._expires_at_ms = None
            self._publish(None)
            return False
        self._publish(format_remaining(remaining))
        return True

    async def _run(self) -> None:
        while True:
            expires_at = self._expires_at_ms
            if expires_at is None:
                return
            remaining = max(0, expires_at - self._clock.now_ms())
            # never sleep past expiry so the final tick lands on it
            await self._sleep_fn(min(self._interval_ms, remaining) / 1000)
            if not self.tick():
                return

    def _publish(self, value: str | None) -> None:
        self.display = value
        if self._on_tick is not None:
            self._on_tick(value)


class QuoteCalculator:
    def __init__(
        self,
        api: BridgeApi,
        *,
        clock: Clock,
        countdown: QuoteCountdown | None = None,
        on_quote: Callable[[Quote | None], None] | None = None,
        validity_ms: int = QUOTE_VALIDITY_MS,
        throttle_ms: int = RECALCULATION_THROTTLE_MS,
    ) -> None:
        self._api = api
        self._clock = clock
        self._countdown = countdown
        self._on_quote = on_quote
        self.validity_ms = validity_ms
        self.throttle_ms = throttle_ms
        self.current: Quote | None = None
        self._latest_key: QuoteKey | None = None
        self._in_flight = 0

    @property
    def is_calculating(self) -> bool:
        return self._in_flight > 0

    def is_current_expired(self) -> bool:
        return self.current is None or self.current.is_expired(self._clock.now_ms())

    async def calculate(
        self,
        from_currency: str,
        to_currency: str,
        amount: object,
        order_type: OrderType | str = OrderType.FIXED,
        *,
        force: bool = False,
    ) -> Quote | None:
        value = try_parse_decimal(amount)
        if not from_currency or not to_currency or value is None or value <= 0:
            self._latest_key = None
            self._set_current(None)
            return None

        key: QuoteKey = (from_currency, to_currency, value, OrderType(order_type))
        if not force and self._can_reuse(key):
            return self.current

        self._latest_key = key
        self._in_flight += 1
        try:
            payload = await self._api.calculate_price(
                from_currency, to_currency, str(value), key[3].value
            )
        except TransportError as exc:
            if key != self._latest_key:
                return None
            self._set_current(None)
            raise QuoteError(f"Failed to calculate estimated amount: {exc}") from exc
        finally:
            self._in_flight -= 1

        if key != self._latest_key:
            logger.info(
                "quote_response_superseded",
                extra={"extra": {"from": from_currency, "to": to_currency, "amount": str(value)}},
            )
            return None

        try:
            quote = self._build_quote(key, payload)
        except QuoteError:
            self._set_current(None)
            raise
        self._set_current(quote)
        return quote

    def _can_reuse(self, key: QuoteKey) -> bool:
        current = self.current
        if current is None or current.request_key != key:
            return False
        now = self._clock.now_ms()
        return not current.is_expired(now) and now - current.created_at_ms < self.throttle_ms

    def _build_quote(self, key: QuoteKey, payload: dict) -> Quote:
        if not envelope_ok(payload):
            message = payload.get("msg") if isinstance(payload, dict) else None
            raise QuoteError(
                f"Price request declined code={envelope_code(payload)}: {message or 'no data'}"
            )
        try:
            data = _PriceData.model_validate(payload["data"])
        except PydanticValidationError as exc:
            raise QuoteError("Price response is malformed") from exc
        if data.from_.min is None or data.from_.max is None or data.to.amount is None:
            raise QuoteError("Price response is missing amount bounds")

        from_currency, to_currency, amount, order_type = key
        now = self._clock.now_ms()
        return Quote(
            from_currency=from_currency,
            to_currency=to_currency,
            send_amount=amount,
            receive_amount=data.to.amount,
            rate=data.rate,
            min_amount=data.from_.min,
            max_amount=data.from_.max,
            created_at_ms=now,
            expires_at_ms=now + self.validity_ms,
            order_type=order_type,
        )

    def _set_current(self, quote: Quote | None) -> None:
        self.current = quote
        if self._countdown is not None:
            if quote is None:
                self._countdown.stop()
            else:
                self._countdown.restart(quote)
        if self._on_quote is not None:
            self._on_quote(quote)

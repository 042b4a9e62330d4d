from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Protocol

from bridgecore.adapters.bridge_api import BridgeApi, envelope_code
from bridgecore.domain.errors import (
    ExpiredQuoteError,
    OrderError,
    OrderValidationError,
    OrderValidationReason,
    QuoteError,
    StorageError,
)
from bridgecore.domain.models import OrderSession, OrderType, Quote, RawStatus, try_parse_decimal
from bridgecore.persistence.interfaces import SessionStore
from bridgecore.services.amount_validator import validate_amount
from bridgecore.services.clock import Clock
from bridgecore.services.quote_service import QuoteCalculator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderRequest:
    from_currency: str
    to_currency: str
    amount: object
    destination_address: str
    order_type: OrderType = OrderType.FIXED


class OrderTracker(Protocol):
    async def track(self, session: OrderSession) -> None: ...


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_expiration(value: object) -> datetime | None:
    seconds = try_parse_decimal(value)
    if seconds is None or seconds <= 0:
        return None
    return datetime.fromtimestamp(float(seconds), tz=UTC)


def _parse_raw_status(value: object) -> RawStatus:
    try:
        return RawStatus(str(value).upper())
    except ValueError:
        return RawStatus.NEW


class OrderCreator:
    def __init__(
        self,
        api: BridgeApi,
        *,
        quotes: QuoteCalculator,
        session_store: SessionStore,
        clock: Clock,
        tracker: OrderTracker | None = None,
    ) -> None:
        self._api = api
        self._quotes = quotes
        self._session_store = session_store
        self._clock = clock
        self._tracker = tracker

    async def create(self, request: OrderRequest) -> OrderSession:
        amount = self._validate(request)
        quote = await self._ensure_fresh_quote(request)

        payload = await self._api.create_order(
            request.from_currency,
            request.to_currency,
            str(amount),
            request.destination_address.strip(),
            OrderType(request.order_type).value,
            str(quote.rate) if quote.rate is not None else "",
        )
        session = self._session_from_response(request, amount, quote, payload)
        logger.info(
            "order_created",
            extra={
                "extra": {
                    "order_id": session.order_id,
                    "from": session.from_currency,
                    "to": session.to_currency,
                    "amount": str(session.send_amount),
                    "status": session.status.value,
                }
            },
        )

        try:
            await self._session_store.save(session)
        except StorageError:
            # the order exists upstream; keep tracking it even if the local slot is stale
            logger.error("order_session_persist_failed", extra={"extra": {"order_id": session.order_id}})
        if self._tracker is not None:
            await self._tracker.track(session)
        return session

    def _validate(self, request: OrderRequest) -> Decimal:
        if not request.from_currency or not request.to_currency:
            raise OrderValidationError(
                OrderValidationReason.MISSING_CURRENCY, "Source and destination currencies are required"
            )
        amount = try_parse_decimal(request.amount)
        if amount is None or amount <= 0:
            raise OrderValidationError(OrderValidationReason.INVALID_AMOUNT, "Valid amount is required")
        if not request.destination_address or not request.destination_address.strip():
            raise OrderValidationError(
                OrderValidationReason.MISSING_DESTINATION, "Destination address is required"
            )
        check = validate_amount(amount, self._quotes.current)
        if check.blocks_submission:
            raise OrderValidationError(
                OrderValidationReason.AMOUNT_OUT_OF_BOUNDS, check.message or "Invalid amount"
            )
        return amount

    async def _ensure_fresh_quote(self, request: OrderRequest) -> Quote:
        quote = self._quotes.current
        now = self._clock.now_ms()
        pair_matches = quote is not None and (
            quote.from_currency,
            quote.to_currency,
            quote.order_type,
        ) == (request.from_currency, request.to_currency, OrderType(request.order_type))
        if quote is not None and pair_matches and not quote.is_expired(now):
            return quote

        logger.info("order_quote_expired_recalculating")
        try:
            await self._quotes.calculate(
                request.from_currency,
                request.to_currency,
                request.amount,
                request.order_type,
                force=True,
            )
        except QuoteError as exc:
            raise ExpiredQuoteError("Exchange rate has expired. Please try again.") from exc
        raise ExpiredQuoteError("Exchange rate has expired. Please try again.")

    def _session_from_response(
        self,
        request: OrderRequest,
        amount: Decimal,
        quote: Quote,
        payload: dict[str, Any],
    ) -> OrderSession:
        code = envelope_code(payload)
        data = payload.get("data") if isinstance(payload, dict) else None
        debug_info = payload.get("debugInfo") if isinstance(payload, dict) else None

        if code == 0 and isinstance(data, dict) and data.get("id") and data.get("token"):
            deposit = data.get("from") if isinstance(data.get("from"), dict) else {}
            timing = data.get("time") if isinstance(data.get("time"), dict) else {}
            return OrderSession(
                order_id=str(data["id"]),
                order_token=str(data["token"]),
                from_currency=request.from_currency,
                to_currency=request.to_currency,
                send_amount=amount,
                destination_address=request.destination_address.strip(),
                deposit_address=_optional_str(deposit.get("address")),
                deposit_tag=_optional_str(deposit.get("tag")),
                deposit_tag_name=_optional_str(deposit.get("tagName")),
                deposit_address_alt=_optional_str(deposit.get("addressAlt")),
                receive_amount=quote.receive_amount,
                order_type=OrderType(request.order_type),
                rate=quote.rate,
                status=_parse_raw_status(data.get("status", RawStatus.NEW.value)),
                expires_at=_parse_expiration(timing.get("expiration")),
            )

        message = payload.get("msg") if isinstance(payload, dict) else None
        if code is not None and code != 0 and message:
            logger.warning(
                "order_declined",
                extra={"extra": {"code": code, "msg": message}},
            )
            raise OrderError(str(message), code=code, debug_info=debug_info)

        logger.error("order_create_no_valid_response")
        raise OrderError("Failed to create order", code=500, debug_info=debug_info)

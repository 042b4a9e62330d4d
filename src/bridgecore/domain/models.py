from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def parse_decimal(value: object) -> Decimal:
    if value is None:
        raise TypeError("Cannot parse decimal from None")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Cannot parse decimal from bool")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        normalized = value.strip().replace(",", "")
        return Decimal(normalized)
    raise TypeError(f"Cannot parse decimal from {type(value)!r}")


def try_parse_decimal(value: object) -> Decimal | None:
    """Return the numeric value of user input, or None when it is not a finite number."""
    try:
        parsed = parse_decimal(value)
    except (TypeError, ValueError, InvalidOperation):
        return None
    if not parsed.is_finite():
        return None
    return parsed


class OrderType(StrEnum):
    FIXED = "fixed"
    FLOAT = "float"


class RawStatus(StrEnum):
    NEW = "NEW"
    PENDING = "PENDING"
    EXCHANGE = "EXCHANGE"
    WITHDRAW = "WITHDRAW"
    DONE = "DONE"
    EXPIRED = "EXPIRED"
    EMERGENCY = "EMERGENCY"


class DerivedStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"


def derive_status(raw: RawStatus, payload: Mapping[str, Any] | None = None) -> DerivedStatus:
    match raw:
        case RawStatus.NEW | RawStatus.PENDING | RawStatus.EXCHANGE | RawStatus.WITHDRAW:
            return DerivedStatus.PENDING
        case RawStatus.DONE:
            return DerivedStatus.COMPLETED
        case RawStatus.EXPIRED:
            return DerivedStatus.EXPIRED
        case RawStatus.EMERGENCY:
            emergency = (payload or {}).get("emergency")
            if isinstance(emergency, Mapping) and str(emergency.get("choice", "")).upper() == "REFUND":
                return DerivedStatus.REFUNDED
            return DerivedStatus.FAILED


@dataclass(frozen=True)
class Quote:
    from_currency: str
    to_currency: str
    send_amount: Decimal
    receive_amount: Decimal
    rate: Decimal | None
    min_amount: Decimal
    max_amount: Decimal
    created_at_ms: int
    expires_at_ms: int
    order_type: OrderType = OrderType.FIXED

    @property
    def request_key(self) -> tuple[str, str, Decimal, OrderType]:
        return (self.from_currency, self.to_currency, self.send_amount, self.order_type)

    def remaining_ms(self, now_ms: int) -> int:
        return max(0, self.expires_at_ms - now_ms)

    def is_expired(self, now_ms: int) -> bool:
        return self.remaining_ms(now_ms) == 0


class OrderSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    order_token: str
    from_currency: str
    to_currency: str
    send_amount: Decimal
    destination_address: str
    deposit_address: str | None = None
    deposit_tag: str | None = None
    deposit_tag_name: str | None = None
    deposit_address_alt: str | None = None
    receive_amount: Decimal | None = None
    order_type: OrderType = OrderType.FIXED
    rate: Decimal | None = None
    status: RawStatus = RawStatus.NEW
    expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class StatusSnapshot:
    order_id: str
    raw_status: RawStatus
    derived_status: DerivedStatus
    observed_at_ms: int
    payload: dict[str, Any] = field(default_factory=dict)
    reconciled: bool = False

    @classmethod
    def from_payload(
        cls, order_id: str, payload: Mapping[str, Any], *, observed_at_ms: int
    ) -> StatusSnapshot:
        raw = RawStatus(str(payload.get("status", "")).upper())
        return cls(
            order_id=order_id,
            raw_status=raw,
            derived_status=derive_status(raw, payload),
            observed_at_ms=observed_at_ms,
            payload=dict(payload),
        )


class CompletedTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    order_token: str
    from_currency: str
    to_currency: str
    amount: Decimal
    destination_address: str
    deposit_address: str | None = None
    status: str = DerivedStatus.COMPLETED.value
    raw_response: dict[str, Any] = Field(default_factory=dict)
    client_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Currency(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    coin: str | None = None
    network: str | None = None
    name: str | None = None
    send: int = 0
    recv: int = 0
    priority: int | None = None
    color: str | None = None
    logo: str | None = None


def select_default_pair(currencies: Iterable[Currency]) -> tuple[str, str] | None:
    """Pick the USDT -> BTC pair offered on first load, when both sides are enabled."""
    items = list(currencies)
    source = next((c for c in items if "USDT" in c.code and c.send == 1), None)
    target = next((c for c in items if c.code == "BTC" and c.recv == 1), None)
    if source is None or target is None:
        return None
    return source.code, target.code

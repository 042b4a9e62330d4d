from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from bridgecore.domain.models import (
    Currency,
    DerivedStatus,
    OrderSession,
    RawStatus,
    StatusSnapshot,
    derive_status,
    parse_decimal,
    select_default_pair,
    try_parse_decimal,
)
from bridgecore.domain.polling_policy import poll_interval_ms


def test_parse_decimal_accepts_grouped_strings() -> None:
    assert parse_decimal("1,000.50") == Decimal("1000.50")
    assert parse_decimal(3) == Decimal("3")
    with pytest.raises(TypeError):
        parse_decimal(True)


@pytest.mark.parametrize("value", [None, "", "abc", "NaN", "inf", object()])
def test_try_parse_decimal_rejects_non_numbers(value: object) -> None:
    assert try_parse_decimal(value) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (RawStatus.NEW, DerivedStatus.PENDING),
        (RawStatus.PENDING, DerivedStatus.PENDING),
        (RawStatus.EXCHANGE, DerivedStatus.PENDING),
        (RawStatus.WITHDRAW, DerivedStatus.PENDING),
        (RawStatus.DONE, DerivedStatus.COMPLETED),
        (RawStatus.EXPIRED, DerivedStatus.EXPIRED),
        (RawStatus.EMERGENCY, DerivedStatus.FAILED),
    ],
)
def test_derive_status(raw: RawStatus, expected: DerivedStatus) -> None:
    assert derive_status(raw) is expected


def test_emergency_refund_choice_derives_refunded() -> None:
    payload = {"status": "EMERGENCY", "emergency": {"choice": "refund", "repeat": "0"}}
    assert derive_status(RawStatus.EMERGENCY, payload) is DerivedStatus.REFUNDED


def test_polling_policy_is_total() -> None:
    assert {status: poll_interval_ms(status) for status in RawStatus} == {
        RawStatus.NEW: 10_000,
        RawStatus.PENDING: 10_000,
        RawStatus.EXCHANGE: 20_000,
        RawStatus.WITHDRAW: 20_000,
        RawStatus.DONE: 30_000,
        RawStatus.EXPIRED: None,
        RawStatus.EMERGENCY: None,
    }
    assert poll_interval_ms(RawStatus.DONE) == 30_000


def test_snapshot_from_payload_normalizes_status_case() -> None:
    snapshot = StatusSnapshot.from_payload(
        "ORD1", {"id": "ORD1", "status": "withdraw"}, observed_at_ms=42
    )
    assert snapshot.raw_status is RawStatus.WITHDRAW
    assert snapshot.derived_status is DerivedStatus.PENDING
    assert snapshot.reconciled is False


def test_snapshot_from_payload_rejects_unknown_status() -> None:
    with pytest.raises(ValueError):
        StatusSnapshot.from_payload("ORD1", {"status": "LOST"}, observed_at_ms=1)


def test_order_session_round_trips_through_json(order_session: OrderSession) -> None:
    restored = OrderSession.model_validate_json(order_session.model_dump_json())
    assert restored == order_session
    with pytest.raises(PydanticValidationError):
        order_session.order_id = "other"  # type: ignore[misc]


def test_select_default_pair_prefers_enabled_usdt_and_btc() -> None:
    currencies = [
        Currency(code="USDTTRC", send=0, recv=1),
        Currency(code="USDTBSC", send=1, recv=1),
        Currency(code="BTC", send=1, recv=1),
    ]
    assert select_default_pair(currencies) == ("USDTBSC", "BTC")
    assert select_default_pair([Currency(code="BTC", recv=0)]) is None

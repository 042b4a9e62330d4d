from __future__ import annotations

from typing import Any, Protocol

ApiEnvelope = dict[str, Any]


class BridgeApi(Protocol):
    """Contract of the exchange engine consumed by the order lifecycle services.

    Every call returns the engine envelope ``{"code": int, "msg": str, "data": ...}``;
    a non-zero ``code`` is a business-level decline, transport failures raise
    ``TransportError``.
    """

    async def fetch_currencies(self) -> ApiEnvelope: ...

    async def calculate_price(
        self,
        from_currency: str,
        to_currency: str,
        amount: str,
        order_type: str,
    ) -> ApiEnvelope: ...

    async def create_order(
        self,
        from_currency: str,
        to_currency: str,
        amount: str,
        destination_address: str,
        order_type: str,
        rate: str,
    ) -> ApiEnvelope: ...

    async def check_order_status(self, order_id: str, token: str) -> ApiEnvelope: ...

    async def emergency_action(
        self,
        order_id: str,
        token: str,
        choice: str,
        address: str | None = None,
    ) -> ApiEnvelope: ...


def envelope_code(payload: ApiEnvelope | None) -> int | str | None:
    if not isinstance(payload, dict):
        return None
    code = payload.get("code")
    if isinstance(code, str) and code.strip().lstrip("-").isdigit():
        return int(code)
    return code


def envelope_ok(payload: ApiEnvelope | None) -> bool:
    return envelope_code(payload) == 0 and isinstance(payload.get("data"), dict | list)

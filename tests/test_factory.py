from __future__ import annotations

import asyncio

from bridgecore.config import Settings
from bridgecore.domain.models import OrderType
from bridgecore.factory import build_bridge_session, build_http_client


def test_build_bridge_session_applies_settings(monkeypatch) -> None:
    monkeypatch.setenv("BRIDGE_API_KEY", "key-1")
    monkeypatch.setenv("BRIDGE_API_SECRET", "secret-1")
    monkeypatch.setenv("DEFAULT_ORDER_TYPE", "float")
    monkeypatch.setenv("RECONCILE_TIMEOUT_MS", "1500")
    monkeypatch.setenv("QUOTE_VALIDITY_MS", "60000")

    async def _scenario() -> None:
        session = build_bridge_session(Settings())
        assert session.inputs.order_type is OrderType.FLOAT
        assert session.reconciler.timeout_ms == 1_500
        assert session.quotes.validity_ms == 60_000
        await session.close()
        assert session.closed

    asyncio.run(_scenario())


def test_build_http_client_uses_credentials_and_timeout(monkeypatch) -> None:
    monkeypatch.setenv("BRIDGE_API_KEY", "key-1")
    monkeypatch.setenv("BRIDGE_API_SECRET", "secret-1")
    monkeypatch.setenv("BRIDGE_HTTP_TIMEOUT_SECONDS", "3")

    client = build_http_client(Settings())

    assert client.api_key == "key-1"
    assert client.api_secret == "secret-1"
    assert client.reliability.read_timeout_seconds == 3.0
    assert client.reliability.connect_timeout_seconds == 3.0
    asyncio.run(client.close())

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any

import pytest

from bridgecore.config import Settings
from bridgecore.domain.errors import StorageError
from bridgecore.domain.models import CompletedTransaction, OrderSession


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture(autouse=True)
def isolate_default_state_db_per_test(
    isolate_settings_from_host_env: None,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    del isolate_settings_from_host_env
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "bridgecore_state.sqlite"))


class FakeClock:
    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualSleep:
    """Sleep function whose waits only end when the test releases them.

    Releasing a wait advances the fake clock by the requested delay first.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future[None]]] = []

    @property
    def pending(self) -> list[float]:
        return [delay for delay, _ in self._waiters]

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        entry = (seconds, asyncio.get_running_loop().create_future())
        self._waiters.append(entry)
        try:
            await entry[1]
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)

    async def release(self, seconds: float | None = None) -> float:
        for entry in self._waiters:
            if seconds is None or entry[0] == seconds:
                self._waiters.remove(entry)
                self.clock.advance(int(entry[0] * 1000))
                entry[1].set_result(None)
                await settle()
                return entry[0]
        raise AssertionError(f"no pending sleep for {seconds!r}; pending={self.pending}")


def price_envelope(
    *, amount: str = "11", minimum: str = "10", maximum: str = "1000", receive: str = "0.00017"
) -> dict[str, Any]:
    return {
        "code": 0,
        "msg": "OK",
        "data": {
            "from": {"code": "USDT", "amount": amount, "min": minimum, "max": maximum},
            "to": {"code": "BTC", "amount": receive},
            "rate": "0.0000155",
        },
    }


def status_envelope(order_id: str, status: str, **extra: Any) -> dict[str, Any]:
    return {"code": 0, "msg": "OK", "data": {"id": order_id, "status": status, **extra}}


class FakeBridgeApi:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.currencies_response: Any = {"code": 0, "msg": "OK", "data": []}
        self.price_responses: list[Any] = []
        self.create_response: Any = {
            "code": 0,
            "msg": "OK",
            "data": {
                "id": "ORD1",
                "token": "tok-1",
                "status": "NEW",
                "from": {"address": "dep-addr", "tag": None},
                "time": {"expiration": 1_700_001_800},
            },
        }
        self.status_responses: list[Any] = []
        self.emergency_response: Any = {"code": 0, "msg": "OK", "data": True}

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    @staticmethod
    def _resolve(response: Any) -> Any:
        if isinstance(response, BaseException):
            raise response
        return response

    def _next(self, queue: list[Any], default: Any) -> Any:
        if not queue:
            return self._resolve(default)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        return self._resolve(item)

    async def fetch_currencies(self) -> Any:
        self.calls.append(("fetch_currencies", ()))
        return self._resolve(self.currencies_response)

    async def calculate_price(self, from_currency, to_currency, amount, order_type) -> Any:
        self.calls.append(("calculate_price", (from_currency, to_currency, amount, order_type)))
        return self._next(self.price_responses, price_envelope(amount=amount))

    async def create_order(
        self, from_currency, to_currency, amount, destination_address, order_type, rate
    ) -> Any:
        self.calls.append(
            (
                "create_order",
                (from_currency, to_currency, amount, destination_address, order_type, rate),
            )
        )
        return self._resolve(self.create_response)

    async def check_order_status(self, order_id, token) -> Any:
        self.calls.append(("check_order_status", (order_id, token)))
        return self._next(self.status_responses, status_envelope(order_id, "NEW"))

    async def emergency_action(self, order_id, token, choice, address=None) -> Any:
        self.calls.append(("emergency_action", (order_id, token, choice, address)))
        return self._resolve(self.emergency_response)


class InMemoryCompletedStore:
    def __init__(self) -> None:
        self.records: dict[str, CompletedTransaction] = {}
        self.put_calls = 0
        self.fail_puts = 0
        self.block_gets = False
        self.put_gate: asyncio.Event | None = None

    async def put(self, record: CompletedTransaction) -> bool:
        self.put_calls += 1
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise StorageError("completed_put failed: disk I/O error")
        if self.put_gate is not None:
            await self.put_gate.wait()
        if record.order_id in self.records:
            return False
        self.records[record.order_id] = record
        return True

    async def get(self, order_id: str) -> CompletedTransaction | None:
        if self.block_gets:
            await asyncio.Event().wait()
        return self.records.get(order_id)


class InMemorySessionStore:
    def __init__(self) -> None:
        self.current: OrderSession | None = None
        self.saves: list[OrderSession] = []

    async def save(self, session: OrderSession) -> None:
        self.saves.append(session)
        self.current = session

    async def load(self) -> OrderSession | None:
        return self.current

    async def clear(self) -> None:
        self.current = None


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manual_sleep(fake_clock: FakeClock) -> ManualSleep:
    return ManualSleep(fake_clock)


@pytest.fixture
def fake_api() -> FakeBridgeApi:
    return FakeBridgeApi()


@pytest.fixture
def completed_store() -> InMemoryCompletedStore:
    return InMemoryCompletedStore()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def order_session() -> OrderSession:
    return OrderSession(
        order_id="ORD1",
        order_token="tok-1",
        from_currency="USDT",
        to_currency="BTC",
        send_amount="11",
        destination_address="addr1",
        deposit_address="dep-addr",
    )

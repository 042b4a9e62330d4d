from __future__ import annotations

import asyncio

from bridgecore.domain.models import CompletedTransaction, OrderSession
from bridgecore.services.completion_recorder import CompletionRecorder, SaveOutcome, SaveState

DONE_PAYLOAD = {"id": "ORD1", "status": "DONE", "token": "tok-1"}


def test_repeated_saves_persist_exactly_one_record(fake_clock, completed_store, order_session) -> None:
    fired: list[CompletedTransaction] = []
    recorder = CompletionRecorder(completed_store, clock=fake_clock, on_completed=fired.append)

    async def _scenario() -> list[SaveOutcome]:
        first = await recorder.save(order_session, DONE_PAYLOAD)
        second = await recorder.save(order_session, DONE_PAYLOAD)
        return [first, second]

    outcomes = asyncio.run(_scenario())

    assert outcomes == [SaveOutcome.SAVED, SaveOutcome.ALREADY_SAVED]
    assert completed_store.put_calls == 1
    assert len(completed_store.records) == 1
    assert len(fired) == 1
    assert recorder.state is SaveState.SAVED


def test_concurrent_saves_only_first_caller_writes(fake_clock, completed_store, order_session) -> None:
    recorder = CompletionRecorder(completed_store, clock=fake_clock)

    async def _scenario() -> list[SaveOutcome]:
        return list(
            await asyncio.gather(
                recorder.save(order_session, DONE_PAYLOAD),
                recorder.save(order_session, DONE_PAYLOAD, is_simulated=True),
                recorder.save(order_session, DONE_PAYLOAD),
            )
        )

    outcomes = asyncio.run(_scenario())

    assert outcomes.count(SaveOutcome.SAVED) == 1
    assert outcomes.count(SaveOutcome.ALREADY_SAVED) == 2
    assert completed_store.put_calls == 1


def test_failed_save_returns_to_pending_and_later_save_succeeds(
    fake_clock, completed_store, order_session
) -> None:
    completed_store.fail_puts = 1
    fired: list[CompletedTransaction] = []
    recorder = CompletionRecorder(completed_store, clock=fake_clock, on_completed=fired.append)

    async def _scenario() -> list[SaveOutcome]:
        first = await recorder.save(order_session, DONE_PAYLOAD)
        assert recorder.state is SaveState.PENDING
        second = await recorder.save(order_session, DONE_PAYLOAD)
        return [first, second]

    assert asyncio.run(_scenario()) == [SaveOutcome.FAILED, SaveOutcome.SAVED]
    assert len(fired) == 1
    assert "ORD1" in completed_store.records


def test_record_already_in_store_still_completes_the_view(
    fake_clock, completed_store, order_session
) -> None:
    fired: list[CompletedTransaction] = []
    recorder = CompletionRecorder(completed_store, clock=fake_clock, on_completed=fired.append)
    asyncio.run(CompletionRecorder(completed_store, clock=fake_clock).save(order_session, DONE_PAYLOAD))

    outcome = asyncio.run(recorder.save(order_session, DONE_PAYLOAD))

    assert outcome is SaveOutcome.ALREADY_SAVED
    assert len(fired) == 1
    assert recorder.is_saved("ORD1")


def test_guard_is_scoped_to_the_loaded_order(fake_clock, completed_store, order_session) -> None:
    recorder = CompletionRecorder(completed_store, clock=fake_clock)
    other = order_session.model_copy(update={"order_id": "ORD2", "order_token": "tok-2"})

    async def _scenario() -> list[SaveOutcome]:
        first = await recorder.save(order_session, DONE_PAYLOAD)
        second = await recorder.save(other, {"id": "ORD2", "status": "DONE"})
        return [first, second]

    assert asyncio.run(_scenario()) == [SaveOutcome.SAVED, SaveOutcome.SAVED]
    assert recorder.order_id == "ORD2"
    assert not recorder.is_saved("ORD1")
    assert sorted(completed_store.records) == ["ORD1", "ORD2"]


def test_record_fields_and_metadata(fake_clock, completed_store, order_session: OrderSession) -> None:
    recorder = CompletionRecorder(completed_store, clock=fake_clock)

    asyncio.run(
        recorder.save(order_session, DONE_PAYLOAD, debug_info={"trace": "abc", "token": "secret-token"})
    )

    record = completed_store.records["ORD1"]
    assert record.status == "completed"
    assert record.amount == order_session.send_amount
    assert record.destination_address == "addr1"
    assert record.deposit_address == "dep-addr"
    assert record.raw_response == DONE_PAYLOAD
    assert record.client_metadata["is_simulated"] is False
    assert record.client_metadata["timestamp"].startswith("2023-11-14T22:13:20")
    assert record.client_metadata["debug_info"]["trace"] == "abc"
    assert record.client_metadata["debug_info"]["token"] != "secret-token"


def test_cancelled_caller_does_not_strand_the_guard(fake_clock, completed_store, order_session) -> None:
    fired: list[CompletedTransaction] = []
    recorder = CompletionRecorder(completed_store, clock=fake_clock, on_completed=fired.append)

    async def _scenario() -> SaveOutcome:
        completed_store.put_gate = asyncio.Event()
        caller = asyncio.create_task(recorder.save(order_session, DONE_PAYLOAD))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        caller.cancel()
        await asyncio.wait({caller})
        assert caller.cancelled()
        assert recorder.state is SaveState.SAVING

        waiter = asyncio.create_task(recorder.save(order_session, DONE_PAYLOAD, is_simulated=True))
        await asyncio.sleep(0)
        completed_store.put_gate.set()
        return await waiter

    assert asyncio.run(_scenario()) is SaveOutcome.ALREADY_SAVED
    assert recorder.state is SaveState.SAVED
    assert len(fired) == 1
    assert completed_store.put_calls == 1
    assert completed_store.records["ORD1"].client_metadata["is_simulated"] is False

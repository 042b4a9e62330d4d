from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from bridgecore.adapters.bridge_api import BridgeApi, envelope_code
from bridgecore.domain.errors import ActionError, TransportError, ValidationError
from bridgecore.services.clock import SleepFn
from bridgecore.services.timers import TimerScope

logger = logging.getLogger(__name__)

EMERGENCY_FOLLOWUP_DELAY_MS = 1_000


class EmergencyChoice(StrEnum):
    EXCHANGE = "EXCHANGE"
    REFUND = "REFUND"


class EmergencyActionHandler:
    TIMER_KEY = "emergency_followup"

    def __init__(
        self,
        api: BridgeApi,
        *,
        timers: TimerScope,
        followup: Callable[[], Awaitable[Any]] | None = None,
        delay_ms: int = EMERGENCY_FOLLOWUP_DELAY_MS,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self._api = api
        self._timers = timers
        self._followup = followup
        self.delay_ms = delay_ms
        self._sleep_fn = sleep_fn
        self.manual_action_taken = False

    def reset(self) -> None:
        self.manual_action_taken = False

    async def perform(
        self,
        choice: EmergencyChoice | str,
        order_id: str,
        token: str,
        refund_address: str | None = None,
    ) -> Any:
        try:
            selected = EmergencyChoice(str(choice).upper())
        except ValueError as exc:
            raise ValidationError(f"Unknown emergency choice: {choice}") from exc
        address = refund_address.strip() if refund_address else None
        if selected is EmergencyChoice.EXCHANGE and address:
            raise ValidationError("A refund address is only accepted with the REFUND choice")

        try:
            payload = await self._api.emergency_action(order_id, token, selected.value, address)
        except TransportError as exc:
            logger.warning(
                "emergency_action_transport_failed",
                extra={"extra": {"order_id": order_id, "choice": selected.value}},
            )
            raise ActionError(str(exc), choice=selected.value, code=exc.status_code) from exc

        code = envelope_code(payload)
        if code != 0:
            message = payload.get("msg") if isinstance(payload, dict) else None
            logger.warning(
                "emergency_action_declined",
                extra={"extra": {"order_id": order_id, "choice": selected.value, "code": code}},
            )
            raise ActionError(
                str(message or "Emergency action failed"), choice=selected.value, code=code
            )

        self.manual_action_taken = True
        logger.info(
            "emergency_action_accepted",
            extra={"extra": {"order_id": order_id, "choice": selected.value}},
        )
        if self._followup is not None:
            self._timers.start_after(
                self.TIMER_KEY, self.delay_ms, self._followup, sleep_fn=self._sleep_fn
            )
        return payload.get("data")

from __future__ import annotations

from enum import StrEnum
from typing import Any


class BridgeError(RuntimeError):
    """Base class for every failure raised by the order lifecycle core."""


class ValidationError(BridgeError, ValueError):
    """Raised when user input is missing or out of bounds."""


class OrderValidationReason(StrEnum):
    MISSING_CURRENCY = "missing_currency"
    INVALID_AMOUNT = "invalid_amount"
    MISSING_DESTINATION = "missing_destination"
    AMOUNT_OUT_OF_BOUNDS = "amount_out_of_bounds"


class OrderValidationError(ValidationError):
    def __init__(self, reason: OrderValidationReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class QuoteError(BridgeError):
    """Raised when the upstream rate request fails; the caller may retry."""


class ExpiredQuoteError(BridgeError):
    """Raised when an order is submitted against a lapsed quote."""


class OrderError(BridgeError):
    """Business decline from the order service, carried verbatim."""

    def __init__(
        self,
        message: str,
        *,
        code: int | str,
        debug_info: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.debug_info = debug_info


class TransportError(BridgeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        request_path: str | None = None,
        retryable: bool = False,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.request_path = request_path
        self.retryable = retryable
        self.retry_after_seconds = retry_after_seconds


class StorageError(BridgeError):
    """Raised when the durable store rejects a read or write."""


class ActionError(BridgeError):
    def __init__(
        self,
        message: str,
        *,
        choice: str,
        code: int | str | None = None,
    ) -> None:
        super().__init__(message)
        self.choice = choice
        self.code = code

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

from bridgecore.domain.models import Quote, try_parse_decimal


class AmountCheckResult(StrEnum):
    OK = "ok"
    TOO_LOW = "too_low"
    TOO_HIGH = "too_high"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AmountCheck:
    result: AmountCheckResult
    message: str | None = None
    bound: Decimal | None = None

    @property
    def blocks_submission(self) -> bool:
        return self.result in {AmountCheckResult.TOO_LOW, AmountCheckResult.TOO_HIGH}


_SKIPPED = AmountCheck(AmountCheckResult.SKIPPED)


def _fmt(value: Decimal) -> str:
    normalized = format(value, "f")
    if "." in normalized:
        normalized = normalized.rstrip("0").rstrip(".")
    return normalized or "0"


def validate_amount(amount: object, quote: Quote | None) -> AmountCheck:
    """Check ``amount`` against the active quote's bounds.

    Only the quote's source-side limits are consulted; with no quote, or an
    amount that is not a number, the check is skipped rather than failed.
    """
    if quote is None:
        return _SKIPPED
    value = try_parse_decimal(amount)
    if value is None:
        return _SKIPPED

    if value < quote.min_amount:
        return AmountCheck(
            AmountCheckResult.TOO_LOW,
            f"Minimum amount is {_fmt(quote.min_amount)} {quote.from_currency}",
            quote.min_amount,
        )
    if value > quote.max_amount:
        return AmountCheck(
            AmountCheckResult.TOO_HIGH,
            f"Maximum amount is {_fmt(quote.max_amount)} {quote.from_currency}",
            quote.max_amount,
        )
    return AmountCheck(AmountCheckResult.OK)

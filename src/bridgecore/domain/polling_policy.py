from __future__ import annotations

from bridgecore.domain.models import RawStatus


def poll_interval_ms(status: RawStatus) -> int | None:
    """Milliseconds between status checks for ``status``; None stops active polling.

    DONE keeps a slow poll so a later downstream reversal (e.g. refund) is still seen.
    """
    match status:
        case RawStatus.NEW | RawStatus.PENDING:
            return 10_000
        case RawStatus.EXCHANGE | RawStatus.WITHDRAW:
            return 20_000
        case RawStatus.DONE:
            return 30_000
        case RawStatus.EXPIRED | RawStatus.EMERGENCY:
            return None

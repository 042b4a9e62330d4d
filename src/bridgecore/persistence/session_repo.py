from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime

from bridgecore.domain.models import OrderSession

logger = logging.getLogger(__name__)


class SqliteSessionRepo:
    """Single-slot storage for the order currently open on this client."""

    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "session"}})
            raise PermissionError("UnitOfWork is read-only; session writes are blocked")

    def save(self, session: OrderSession) -> None:
        self._ensure_writable()
        self._conn.execute(
            """
            INSERT INTO order_session_current (slot_id, order_id, session_json, updated_at)
            VALUES (1, ?, ?, ?)
            ON CONFLICT(slot_id) DO UPDATE SET
                order_id = excluded.order_id,
                session_json = excluded.session_json,
                updated_at = excluded.updated_at
            """,
            (session.order_id, session.model_dump_json(), datetime.now(UTC).isoformat()),
        )

    def load(self) -> OrderSession | None:
        row = self._conn.execute(
            "SELECT session_json FROM order_session_current WHERE slot_id = 1"
        ).fetchone()
        if row is None:
            return None
        return OrderSession.model_validate_json(str(row["session_json"]))

    def clear(self) -> None:
        self._ensure_writable()
        self._conn.execute("DELETE FROM order_session_current WHERE slot_id = 1")

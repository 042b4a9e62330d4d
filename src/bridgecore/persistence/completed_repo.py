from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from decimal import Decimal

from bridgecore.domain.models import CompletedTransaction

logger = logging.getLogger(__name__)


class SqliteCompletedTransactionsRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "completed"}})
            raise PermissionError("UnitOfWork is read-only; completed transaction writes are blocked")

    def put(self, record: CompletedTransaction) -> bool:
        """Insert ``record`` unless one already exists for its order id.

        Returns True when this call created the row.
        """
        self._ensure_writable()
        cursor = self._conn.execute(
            """
            INSERT INTO completed_transactions (
                order_id, order_token, from_currency, to_currency, amount,
                destination_address, deposit_address, status,
                raw_response_json, client_metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(order_id) DO NOTHING
            """,
            (
                record.order_id,
                record.order_token,
                record.from_currency,
                record.to_currency,
                str(record.amount),
                record.destination_address,
                record.deposit_address,
                record.status,
                json.dumps(record.raw_response, sort_keys=True, default=str),
                json.dumps(record.client_metadata, sort_keys=True, default=str),
                record.created_at.isoformat(),
            ),
        )
        return cursor.rowcount == 1

    def get(self, order_id: str) -> CompletedTransaction | None:
        row = self._conn.execute(
            "SELECT * FROM completed_transactions WHERE order_id = ?",
            (order_id,),
        ).fetchone()
        if row is None:
            return None
        return CompletedTransaction(
            order_id=str(row["order_id"]),
            order_token=str(row["order_token"]),
            from_currency=str(row["from_currency"]),
            to_currency=str(row["to_currency"]),
            amount=Decimal(str(row["amount"])),
            destination_address=str(row["destination_address"]),
            deposit_address=(str(row["deposit_address"]) if row["deposit_address"] else None),
            status=str(row["status"]),
            raw_response=json.loads(row["raw_response_json"]),
            client_metadata=json.loads(row["client_metadata_json"]),
            created_at=datetime.fromisoformat(str(row["created_at"])),
        )

    def count(self, order_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM completed_transactions WHERE order_id = ?",
            (order_id,),
        ).fetchone()
        return int(row["n"])

"""
Outbox ledger for client mutations.

The ledger records the terminal outcome of every processed mutation, keyed by
its client-generated mutation_id. The queue coordinator consults it before
applying anything, which makes client retries safe.

Invariants:
    - At most one row per mutation_id (primary key)
    - Rows are written once and never updated
    - A duplicate submission never creates a row

How to change safely:
    - Never add an upsert path here; "applied" must never be revisited
    - Keep the lookup and the record inside the same write transaction
"""

from __future__ import annotations

import logging
import sqlite3
from enum import Enum

from .database import Database
from .models import OutboxRecord

logger = logging.getLogger(__name__)


class OutboxStatus(str, Enum):
    """Terminal outcomes stored in the ledger."""

    APPLIED = "applied"
    ERROR = "error"


class OutboxLedger:
    """Append-once ledger over the outbox_log table.

    Example:
        >>> ledger = OutboxLedger()
        >>> with db.write_transaction() as conn:
        ...     if ledger.lookup(conn, "m1") is None:
        ...         ledger.record(conn, "m1", "u1", "price_alert", "insert",
        ...                       OutboxStatus.APPLIED, now=ts)
    """

    _columns = "mutation_id, user_id, entity, op, status, message, created_at, updated_at"

    def lookup(self, conn: sqlite3.Connection, mutation_id: str) -> OutboxRecord | None:
        """Return the recorded outcome for a mutation, if any."""
        cursor = conn.execute(
            f"SELECT {self._columns} FROM outbox_log WHERE mutation_id = ?",
            (mutation_id,),
        )
        row = cursor.fetchone()
        return OutboxRecord.from_row(row) if row else None

    def record(
        self,
        conn: sqlite3.Connection,
        mutation_id: str,
        user_id: str,
        entity: str,
        op: str,
        status: OutboxStatus,
        now: str,
        message: str | None = None,
    ) -> OutboxRecord:
        """Record the terminal outcome of a mutation.

        Raises:
            sqlite3.IntegrityError: If the mutation_id was already recorded
        """
        conn.execute(
            f"""
            INSERT INTO outbox_log ({self._columns})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (mutation_id, user_id, entity, op, status.value, message, now, now),
        )

        logger.debug(
            "Recorded outbox entry",
            extra={"mutation_id": mutation_id, "user_id": user_id, "status": status.value},
        )

        return OutboxRecord(
            mutation_id=mutation_id,
            user_id=user_id,
            entity=entity,
            op=op,
            status=status.value,
            created_at=now,
            updated_at=now,
            message=message,
        )

    async def get(self, db: Database, mutation_id: str) -> OutboxRecord | None:
        """Read a ledger entry outside any write transaction."""
        with db.read_transaction() as conn:
            return self.lookup(conn, mutation_id)

"""
Mutation queue coordinator for FieldSync.

The queue coordinator drains a batch of client mutations in the order the
client sent them. Each mutation is checked against the outbox ledger,
validated, applied, and its outcome recorded, so a retried batch never
applies anything twice.

Transaction model:
    - One BEGIN IMMEDIATE transaction per batch; concurrent batches
      serialize on the SQLite write lock
    - One SAVEPOINT per mutation; a rejected mutation rolls back to its
      savepoint and records an "error" ledger row, the rest of the batch
      continues
    - Any fault that is not a MutationError rolls back the whole batch and
      propagates to the caller; nothing is recorded for that batch

Invariants:
    - Result order matches input order
    - A mutation_id already in the ledger is reported "skipped" and never
      re-applied, whatever its recorded status
    - The ledger row and the entity write commit together or not at all

How to change safely:
    - Keep the ledger lookup inside the batch transaction
    - New domain rejections must raise MutationError, never return errors
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..clock import Clock, SystemClock, now_timestamp
from ..store.database import Database, savepoint
from ..store.outbox import OutboxLedger, OutboxStatus
from .applier import MutationApplier
from .mutations import ClientMutation, MutationError, parse_payload

logger = logging.getLogger(__name__)

SKIPPED = "skipped"
DUPLICATE = "duplicate"


@dataclass
class MutationResult:
    """Per-mutation outcome returned to the client.

    Attributes:
        mutation_id: Echo of the client's idempotency key
        status: applied, skipped or error
        message: Reason for skipped or error results
        action: What an applied mutation did to the store
    """

    mutation_id: str
    status: str
    message: str | None = None
    action: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"mutation_id": self.mutation_id, "status": self.status}
        if self.message is not None:
            data["message"] = self.message
        if self.action is not None:
            data["action"] = self.action
        return data


@dataclass
class QueueResult:
    """Outcome of one queue batch."""

    results: list[MutationResult] = field(default_factory=list)
    ok: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "results": [result.to_dict() for result in self.results]}


class QueueCoordinator:
    """Applies batches of client mutations exactly once.

    Example:
        >>> coordinator = QueueCoordinator(db, MutationApplier(clock), clock=clock)
        >>> result = await coordinator.process_queue([mutation])
        >>> result.results[0].status
        'applied'
    """

    def __init__(
        self,
        db: Database,
        applier: MutationApplier,
        ledger: OutboxLedger | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            db: Entity store database
            applier: Per-entity mutation applier
            ledger: Outbox ledger
            clock: Source of ledger timestamps
        """
        self.db = db
        self.applier = applier
        self.ledger = ledger or OutboxLedger()
        self.clock = clock or SystemClock()

    async def process_queue(self, mutations: Iterable[ClientMutation]) -> QueueResult:
        """Apply a batch of mutations in order.

        Args:
            mutations: Validated envelopes, in client order

        Returns:
            One result per mutation, in input order

        Raises:
            sqlite3.Error: On store faults; the whole batch is rolled back
        """
        batch = list(mutations)
        results: list[MutationResult] = []

        with self.db.write_transaction() as conn:
            for index, mutation in enumerate(batch):
                results.append(self._process_one(conn, index, mutation))

        counts: dict[str, int] = {}
        for result in results:
            counts[result.status] = counts.get(result.status, 0) + 1
        logger.info("Processed mutation batch", extra={"size": len(batch), **counts})

        return QueueResult(results=results)

    def _process_one(
        self, conn: sqlite3.Connection, index: int, mutation: ClientMutation
    ) -> MutationResult:
        recorded = self.ledger.lookup(conn, mutation.mutation_id)
        if recorded is not None:
            logger.debug(
                "Skipped duplicate mutation",
                extra={"mutation_id": mutation.mutation_id, "recorded_status": recorded.status},
            )
            return MutationResult(mutation.mutation_id, SKIPPED, DUPLICATE)

        now = now_timestamp(self.clock)
        try:
            with savepoint(conn, f"m{index}"):
                payload = parse_payload(mutation)
                outcome = self.applier.apply(conn, mutation.user_id, payload)
                self.ledger.record(
                    conn,
                    mutation.mutation_id,
                    mutation.user_id,
                    mutation.entity,
                    mutation.op.value,
                    OutboxStatus.APPLIED,
                    now=now,
                )
        except MutationError as e:
            message = str(e)
            self.ledger.record(
                conn,
                mutation.mutation_id,
                mutation.user_id,
                mutation.entity,
                mutation.op.value,
                OutboxStatus.ERROR,
                now=now,
                message=message,
            )
            logger.warning(
                "Rejected mutation",
                extra={
                    "mutation_id": mutation.mutation_id,
                    "user_id": mutation.user_id,
                    "entity": mutation.entity,
                    "error": message,
                },
            )
            return MutationResult(mutation.mutation_id, OutboxStatus.ERROR.value, message)

        return MutationResult(
            mutation.mutation_id,
            OutboxStatus.APPLIED.value,
            message=outcome.reason,
            action=outcome.action,
        )

"""
Mutation applier for FieldSync.

The applier turns one typed client mutation into a store write inside the
caller's transaction. It decides, per entity, whether the write happens:
- Last-write-wins: an update carrying data.updated_at not newer than the
  stored row is skipped; the server wins ties
- Terminal ticket states swallow client transitions without error
- Create-only tickets are idempotent by primary id

Invariants:
    - Never opens or commits transactions; the queue coordinator owns them
    - Domain rejections raise MutationError; anything else is a fault
    - User rows are only ever written for the mutation's own user_id

How to change safely:
    - Add a branch to ``apply`` for every new payload type
    - Keep the stale check before any status transition
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import timedelta

from ..clock import Clock, SystemClock, format_timestamp
from ..store.models import PriceAlert, ShopTicket
from ..store.repositories import PriceAlertRepository, ShopTicketRepository
from .mutations import (
    MutationError,
    MutationPayload,
    PriceAlertDelete,
    PriceAlertUpsert,
    TicketCreate,
    TicketStatusChange,
)
from .tickets import CLIENT_REQUESTABLE, TicketStatus

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
DELETED = "deleted"
UNCHANGED = "unchanged"


@dataclass
class ApplyOutcome:
    """What the applier did with an accepted mutation.

    Attributes:
        action: inserted, updated, deleted or unchanged
        reason: Why nothing changed, for unchanged outcomes
    """

    action: str
    reason: str | None = None


def is_stale(incoming: str | None, stored: str) -> bool:
    """Last-write-wins check.

    A write without a client timestamp always proceeds. Otherwise it must be
    strictly newer than the stored row.
    """
    return incoming is not None and incoming <= stored


class MutationApplier:
    """Applies typed client mutations to the entity store.

    Example:
        >>> applier = MutationApplier(clock)
        >>> with db.write_transaction() as conn:
        ...     outcome = applier.apply(conn, "u1", PriceAlertDelete(id="a1"))
    """

    def __init__(
        self,
        clock: Clock | None = None,
        ticket_ttl_days: int = 7,
        alerts: PriceAlertRepository | None = None,
        tickets: ShopTicketRepository | None = None,
    ) -> None:
        """Initialize the applier.

        Args:
            clock: Source of server timestamps
            ticket_ttl_days: Lifetime of client-created tickets without expires_at
            alerts: Price alert repository
            tickets: Shop ticket repository
        """
        self.clock = clock or SystemClock()
        self.ticket_ttl = timedelta(days=ticket_ttl_days)
        self.alerts = alerts or PriceAlertRepository()
        self.tickets = tickets or ShopTicketRepository()

    def apply(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        payload: MutationPayload,
    ) -> ApplyOutcome:
        """Apply one mutation for ``user_id``.

        Raises:
            MutationError: If the mutation is rejected by domain rules
        """
        if isinstance(payload, PriceAlertUpsert):
            return self._apply_alert_upsert(conn, user_id, payload)
        elif isinstance(payload, PriceAlertDelete):
            return self._apply_alert_delete(conn, user_id, payload)
        elif isinstance(payload, TicketStatusChange):
            return self._apply_ticket_status(conn, user_id, payload)
        elif isinstance(payload, TicketCreate):
            return self._apply_ticket_create(conn, user_id, payload)
        raise MutationError(f"Unsupported payload: {type(payload).__name__}")

    def _apply_alert_upsert(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        data: PriceAlertUpsert,
    ) -> ApplyOutcome:
        existing = self.alerts.get(conn, data.id)
        if existing is not None and existing.user_id != user_id:
            raise MutationError("price_alert id conflict")

        if existing is not None and is_stale(data.updated_at, existing.updated_at):
            return ApplyOutcome(UNCHANGED, reason="stale")

        now = format_timestamp(self.clock.now())
        self.alerts.upsert(
            conn,
            PriceAlert(
                id=data.id,
                user_id=user_id,
                crop=data.crop,
                market_key=data.market_key,
                variety=data.variety,
                size=data.size,
                target_min=data.target_min,
                target_max=data.target_max,
                unit=data.unit,
                active=data.active,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            ),
        )
        return ApplyOutcome(UPDATED if existing else INSERTED)

    def _apply_alert_delete(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        data: PriceAlertDelete,
    ) -> ApplyOutcome:
        if self.alerts.delete(conn, user_id, data.id):
            return ApplyOutcome(DELETED)
        return ApplyOutcome(UNCHANGED, reason="absent")

    def _apply_ticket_status(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        data: TicketStatusChange,
    ) -> ApplyOutcome:
        try:
            requested = TicketStatus(data.status)
        except ValueError:
            requested = None
        if requested not in CLIENT_REQUESTABLE:
            raise MutationError("unsupported status (client can only cancel)")

        ticket = self.tickets.get(conn, data.id, user_id=user_id)
        if ticket is None:
            raise MutationError("ticket not found")

        try:
            stored = TicketStatus.parse(ticket.status)
        except ValueError:
            raise MutationError("unknown ticket status") from None
        if stored.is_terminal:
            return ApplyOutcome(UNCHANGED, reason="terminal")

        if is_stale(data.updated_at, ticket.updated_at):
            return ApplyOutcome(UNCHANGED, reason="stale")

        now = format_timestamp(self.clock.now())
        self.tickets.set_status(conn, ticket.id, requested.value, now)
        return ApplyOutcome(UPDATED)

    def _apply_ticket_create(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        data: TicketCreate,
    ) -> ApplyOutcome:
        if self.tickets.get(conn, data.id) is not None:
            return ApplyOutcome(UNCHANGED, reason="exists")

        issued_at = self.clock.now()
        now = format_timestamp(issued_at)
        inserted = self.tickets.upsert(
            conn,
            ShopTicket(
                id=data.id,
                user_id=user_id,
                crop=data.crop,
                diagnosis_key=data.diagnosis_key,
                status=TicketStatus.ISSUED.value,
                created_at=now,
                expires_at=data.expires_at or format_timestamp(issued_at + self.ticket_ttl),
                updated_at=now,
                severity=data.severity,
                recommended_classes=data.recommended_classes,
                dosage_note=data.dosage_note,
                rai=data.rai,
                shop_id=data.shop_id,
                hmac_sig=data.hmac_sig,
            ),
        )
        return ApplyOutcome(INSERTED if inserted else UNCHANGED)

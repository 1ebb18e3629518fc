"""
Shop ticket lifecycle.

States:
    issued ──scan──▶ scanned ──complete──▶ completed
      │                 │
      ├──cancel─────────┼──▶ canceled      (the only client-driven edge)
      └──expire─────────┴──▶ expired

Terminal states (completed, canceled, expired) accept no further
transitions. Client cancellations go through the queue; scanning,
completion and expiry are driven by the counter flow and the expiry sweep,
which live here as TicketLifecycle.

Invariants:
    - TERMINAL_STATES is the one definition every status check uses
    - Every transition bumps updated_at so clients pick it up on next sync
    - The legacy spelling "fulfilled" reads as completed and is never written
"""

from __future__ import annotations

import logging
from enum import Enum

from ..clock import Clock, SystemClock, now_timestamp
from ..store.database import Database
from ..store.models import ShopTicket
from ..store.repositories import ShopTicketRepository

logger = logging.getLogger(__name__)


class TicketStatus(str, Enum):
    ISSUED = "issued"
    SCANNED = "scanned"
    COMPLETED = "completed"
    CANCELED = "canceled"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: str) -> TicketStatus:
        """Read a stored status.

        Raises:
            ValueError: If the value is not a known status
        """
        return cls(_LEGACY_ALIASES.get(value, value))

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


_LEGACY_ALIASES = {"fulfilled": TicketStatus.COMPLETED.value}

TERMINAL_STATES = frozenset({TicketStatus.COMPLETED, TicketStatus.CANCELED, TicketStatus.EXPIRED})
OPEN_STATES = frozenset({TicketStatus.ISSUED, TicketStatus.SCANNED})

# Statuses a client may request through the queue
CLIENT_REQUESTABLE = frozenset({TicketStatus.CANCELED})


class TicketTransitionError(Exception):
    """A non-client lifecycle transition is not allowed."""

    pass


def _stored_status(ticket: ShopTicket) -> TicketStatus | None:
    """Stored status of ``ticket``, or None when it is not a known status."""
    try:
        return TicketStatus.parse(ticket.status)
    except ValueError:
        logger.warning(
            "Ticket has unknown stored status",
            extra={"ticket_id": ticket.id, "status": ticket.status},
        )
        return None


class TicketLifecycle:
    """Counter-flow and expiry transitions for shop tickets.

    These transitions never come from client mutations. They create the
    pre-existing state (scanned, completed, expired) that the queue must
    respect when a client later tries to cancel.

    Example:
        >>> lifecycle = TicketLifecycle(db)
        >>> await lifecycle.scan_ticket("t1", shop_id=7)
        >>> await lifecycle.complete_ticket("t1", shop_id=7)
        >>> expired = await lifecycle.expire_overdue_tickets()
    """

    def __init__(
        self,
        db: Database,
        clock: Clock | None = None,
        tickets: ShopTicketRepository | None = None,
    ) -> None:
        self.db = db
        self.clock = clock or SystemClock()
        self.tickets = tickets or ShopTicketRepository()

    async def scan_ticket(self, ticket_id: str, shop_id: int) -> ShopTicket:
        """Record a counter scan: issued -> scanned.

        Raises:
            TicketTransitionError: If the ticket is missing, not issued, or past expiry
        """
        now = now_timestamp(self.clock)
        with self.db.write_transaction() as conn:
            ticket = self.tickets.get(conn, ticket_id)
            if ticket is None:
                raise TicketTransitionError(f"Ticket not found: {ticket_id}")
            if _stored_status(ticket) is not TicketStatus.ISSUED:
                raise TicketTransitionError("Ticket not found or already used")
            if ticket.expires_at < now:
                raise TicketTransitionError("Ticket expired")

            self.tickets.set_status(
                conn,
                ticket_id,
                TicketStatus.SCANNED.value,
                now,
                shop_id=shop_id,
                scanned_at=now,
            )
            scanned = self.tickets.get(conn, ticket_id)

        logger.info("Ticket scanned", extra={"ticket_id": ticket_id, "shop_id": shop_id})
        return scanned

    async def complete_ticket(self, ticket_id: str, shop_id: int) -> ShopTicket:
        """Confirm the sale at the scanning shop: scanned -> completed.

        Raises:
            TicketTransitionError: If the ticket was not scanned by this shop
        """
        now = now_timestamp(self.clock)
        with self.db.write_transaction() as conn:
            ticket = self.tickets.get(conn, ticket_id)
            if (
                ticket is None
                or ticket.shop_id != shop_id
                or _stored_status(ticket) is not TicketStatus.SCANNED
            ):
                raise TicketTransitionError("Ticket not found or not scanned by this shop")

            self.tickets.set_status(
                conn, ticket_id, TicketStatus.COMPLETED.value, now, completed_at=now
            )
            completed = self.tickets.get(conn, ticket_id)

        logger.info("Ticket completed", extra={"ticket_id": ticket_id, "shop_id": shop_id})
        return completed

    async def expire_overdue_tickets(self) -> int:
        """Expire every open ticket whose expires_at has passed.

        Returns:
            Number of tickets expired
        """
        now = now_timestamp(self.clock)
        with self.db.write_transaction() as conn:
            count = self.tickets.expire_overdue(
                conn,
                now,
                open_states=sorted(state.value for state in OPEN_STATES),
                expired_state=TicketStatus.EXPIRED.value,
            )

        if count:
            logger.info("Expired overdue tickets", extra={"count": count})
        return count

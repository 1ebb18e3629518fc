"""
Delta sync for FieldSync.

The sync coordinator answers "what changed since X" for one user: shared
reference rows plus the user's own rows, each collection bounded, and a
cursor to resume from.

Invariants:
    - Read-only; safe to retry and to run concurrently with anything
    - All collections are read from one snapshot
    - next_since >= every returned updated_at and >= the supplied since
    - When a collection has rows left after its page, no collection returns
      rows newer than that page's last row, so no row is ever skipped by
      the cursor
    - Pages never split rows sharing one updated_at (see DeltaRepository)

How to change safely:
    - New collections must be added to DeltaReader.read and to the bundle
    - Never return rows out of updated_at order within a collection
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..clock import Clock, SystemClock, now_timestamp
from ..store.database import Database
from ..store.repositories import (
    DeltaPage,
    PriceAlertRepository,
    ProductClassRepository,
    ShopRepository,
    ShopTicketRepository,
)
from .cursor import SyncRequestError, next_cursor, parse_list, parse_since

logger = logging.getLogger(__name__)

REFS = "refs"
USER = "user"


@dataclass
class SyncBundle:
    """Response of one sync call.

    Attributes:
        server_time: Server clock at the start of the call
        next_since: Cursor the client must persist and resend
        refs: Reference collections by name
        user: The user's collections by name
        has_more: A page was full; the client should sync again
    """

    server_time: str
    next_since: str
    refs: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    user: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    has_more: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "server_time": self.server_time,
            "next_since": self.next_since,
            "refs": self.refs,
            "user": self.user,
            "has_more": self.has_more,
        }


class DeltaReader:
    """Runs the per-entity delta queries for one sync call."""

    def __init__(
        self,
        shops: ShopRepository | None = None,
        product_classes: ProductClassRepository | None = None,
        price_alerts: PriceAlertRepository | None = None,
        shop_tickets: ShopTicketRepository | None = None,
    ) -> None:
        self.shops = shops or ShopRepository()
        self.product_classes = product_classes or ProductClassRepository()
        self.price_alerts = price_alerts or PriceAlertRepository()
        self.shop_tickets = shop_tickets or ShopTicketRepository()

    def read(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        since: str | None,
        limit: int,
        areas: list[str],
        crops: list[str],
    ) -> dict[tuple[str, str], DeltaPage[Any]]:
        """Fetch one page of every collection, keyed by (section, name)."""
        return {
            (REFS, "shops"): self.shops.get_delta_since(conn, since, limit, areas=areas),
            (REFS, "product_classes"): self.product_classes.get_delta_since(conn, since, limit),
            (USER, "price_alerts"): self.price_alerts.get_delta_since(
                conn, user_id, since, limit, crops=crops
            ),
            (USER, "shop_tickets"): self.shop_tickets.get_delta_since(
                conn, user_id, since, limit, crops=crops
            ),
        }


def align_pages(
    pages: dict[tuple[str, str], DeltaPage[Any]],
) -> tuple[dict[tuple[str, str], list[Any]], bool]:
    """Cut every collection at the earliest end of an unfinished page.

    A page with more rows behind it must not let the cursor pass those rows.
    Returning newer rows from another collection would do exactly that, so
    everything newer than the earliest unfinished page's last row is held
    back for the next call.

    Returns:
        The trimmed collections and whether any page was unfinished
    """
    unfinished_ends = [page.last_updated_at for page in pages.values() if page.has_more]
    if not unfinished_ends:
        return {key: page.rows for key, page in pages.items()}, False

    bound = min(unfinished_ends)
    trimmed = {
        key: [row for row in page.rows if row.updated_at <= bound] for key, page in pages.items()
    }
    return trimmed, True


class SyncCoordinator:
    """Computes delta bundles and advances the client cursor.

    Example:
        >>> coordinator = SyncCoordinator(db)
        >>> bundle = await coordinator.sync("u1", since="2025-01-01T00:00:00Z")
        >>> bundle.next_since
        '2025-01-02T08:15:00.000000Z'
    """

    def __init__(
        self,
        db: Database,
        clock: Clock | None = None,
        page_limit: int = 2000,
        reader: DeltaReader | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            db: Entity store database
            clock: Source of server_time
            page_limit: Maximum rows per collection per call
            reader: Delta reader (repositories)
        """
        if page_limit <= 0:
            raise ValueError("page_limit must be positive")
        self.db = db
        self.clock = clock or SystemClock()
        self.page_limit = page_limit
        self.reader = reader or DeltaReader()

    async def sync(
        self,
        user_id: str | None,
        since: str | None = None,
        areas: str | Iterable[str] | None = None,
        crops: str | Iterable[str] | None = None,
    ) -> SyncBundle:
        """Return every row changed after ``since`` visible to ``user_id``.

        Args:
            user_id: Owner of the private collections (required)
            since: Exclusive cursor from a previous call, or None for everything
            areas: Area codes; a shop matches if any of its area codes is listed
            crops: Crop keys narrowing the user collections

        Raises:
            SyncRequestError: If user_id is missing or since is malformed
        """
        if not user_id:
            raise SyncRequestError("user_id required for sync")

        cursor = parse_since(since)
        area_list = parse_list(areas)
        crop_list = parse_list(crops)
        server_time = now_timestamp(self.clock)

        with self.db.read_transaction() as conn:
            pages = self.reader.read(
                conn, user_id, cursor, self.page_limit, area_list, crop_list
            )

        collections, has_more = align_pages(pages)

        next_since = next_cursor(
            (row.updated_at for rows in collections.values() for row in rows),
            server_time,
            cursor,
        )

        bundle = SyncBundle(server_time=server_time, next_since=next_since, has_more=has_more)
        for (section, name), rows in collections.items():
            target = bundle.refs if section == REFS else bundle.user
            target[name] = [row.to_dict() for row in rows]

        logger.debug(
            "Computed sync bundle",
            extra={
                "user_id": user_id,
                "since": cursor,
                "next_since": next_since,
                "rows": sum(len(rows) for rows in collections.values()),
                "has_more": has_more,
            },
        )
        return bundle

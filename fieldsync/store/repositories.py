"""
Per-entity repositories over the FieldSync database.

Every repository exposes the same delta read (``get_delta_since``) so the
sync coordinator can treat collections uniformly, plus the writes its entity
supports. Repositories never open transactions: callers pass the connection
of the transaction they are running in.

Invariants:
    - Delta reads are ``updated_at > since`` (exclusive), ordered by
      updated_at ascending, capped at ``limit`` except when one updated_at
      value alone exceeds the cap
    - A page never splits rows that share an updated_at
    - User-entity reads and writes are always scoped by user_id, except the
      id-existence checks used to keep primary keys globally unique
    - Writes stamp updated_at from the caller-supplied ``now``

How to change safely:
    - Keep the ORDER BY on updated_at; the cursor relies on it
    - New filters must combine with AND against the since bound
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from .models import PriceAlert, ProductClass, Shop, ShopTicket

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")


@dataclass
class DeltaPage(Generic[RowT]):
    """One bounded delta read.

    Attributes:
        rows: Rows ordered by updated_at ascending
        has_more: Rows newer than ``since`` remain after this page
    """

    rows: list[RowT] = field(default_factory=list)
    has_more: bool = False

    @property
    def last_updated_at(self) -> str | None:
        return self.rows[-1].updated_at if self.rows else None


class DeltaRepository(Generic[RowT]):
    """Shared delta query for one table."""

    table: ClassVar[str]
    columns: ClassVar[tuple[str, ...]]

    def _row(self, row: sqlite3.Row) -> RowT:
        raise NotImplementedError

    def _select(
        self,
        conn: sqlite3.Connection,
        clauses: Sequence[str],
        args: Sequence[Any],
        limit: int | None = None,
    ) -> list[RowT]:
        query = f"SELECT {', '.join(self.columns)} FROM {self.table}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY updated_at ASC"
        params = list(args)
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        cursor = conn.execute(query, params)
        return [self._row(row) for row in cursor.fetchall()]

    def _select_delta(
        self,
        conn: sqlite3.Connection,
        since: str | None,
        limit: int,
        where: Sequence[str] = (),
        params: Sequence[Any] = (),
    ) -> DeltaPage[RowT]:
        """Read at most ``limit`` rows changed after ``since``.

        A page never ends inside a group of rows sharing one updated_at:
        the cursor is exclusive, so the rest of the group would be skipped.
        The page is cut before the group instead, or, when the whole page is
        one group, extended to the end of it.
        """
        clauses = list(where)
        args = list(params)
        if since:
            clauses.append("updated_at > ?")
            args.append(since)

        rows = self._select(conn, clauses, args, limit + 1)
        if len(rows) <= limit:
            return DeltaPage(rows)

        page = rows[:limit]
        edge = page[-1].updated_at
        if rows[limit].updated_at != edge:
            return DeltaPage(page, has_more=True)

        before_edge = [row for row in page if row.updated_at < edge]
        if before_edge:
            return DeltaPage(before_edge, has_more=True)

        group = self._select(conn, [*clauses, "updated_at = ?"], [*args, edge])
        logger.debug(
            "Extended delta page over tied updated_at",
            extra={"table": self.table, "updated_at": edge, "rows": len(group)},
        )
        return DeltaPage(group, has_more=True)


def _in_clause(column: str, values: Sequence[Any]) -> str:
    return f"{column} IN ({', '.join('?' for _ in values)})"


class ShopRepository(DeltaRepository[Shop]):
    """Shops, filterable by area code."""

    table = "shops"
    columns = (
        "id",
        "name_th",
        "province_code",
        "amphoe_code",
        "tambon_code",
        "address",
        "phone",
        "line_id",
        "referral_code",
        "is_active",
        "updated_at",
    )
    area_columns = ("province_code", "amphoe_code", "tambon_code")

    def _row(self, row: sqlite3.Row) -> Shop:
        return Shop.from_row(row)

    def get_delta_since(
        self,
        conn: sqlite3.Connection,
        since: str | None,
        limit: int,
        areas: Sequence[str] = (),
    ) -> DeltaPage[Shop]:
        """Active shops changed after ``since``.

        A shop matches the area filter when any of its area codes is in
        ``areas``.
        """
        where = ["is_active = 1"]
        params: list[Any] = []
        if areas:
            where.append("(" + " OR ".join(_in_clause(col, areas) for col in self.area_columns) + ")")
            for _ in self.area_columns:
                params.extend(areas)
        return self._select_delta(conn, since, limit, where, params)

    def upsert(self, conn: sqlite3.Connection, shop: Shop) -> None:
        conn.execute(
            """
            INSERT INTO shops (id, name_th, province_code, amphoe_code, tambon_code,
                               address, phone, line_id, referral_code, is_active, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name_th = excluded.name_th,
                province_code = excluded.province_code,
                amphoe_code = excluded.amphoe_code,
                tambon_code = excluded.tambon_code,
                address = excluded.address,
                phone = excluded.phone,
                line_id = excluded.line_id,
                referral_code = excluded.referral_code,
                is_active = excluded.is_active,
                updated_at = excluded.updated_at
            """,
            (
                shop.id,
                shop.name_th,
                shop.province_code,
                shop.amphoe_code,
                shop.tambon_code,
                shop.address,
                shop.phone,
                shop.line_id,
                shop.referral_code,
                1 if shop.is_active else 0,
                shop.updated_at,
            ),
        )


class ProductClassRepository(DeltaRepository[ProductClass]):
    table = "product_classes"
    columns = ("key", "name_th", "updated_at")

    def _row(self, row: sqlite3.Row) -> ProductClass:
        return ProductClass.from_row(row)

    def get_delta_since(
        self, conn: sqlite3.Connection, since: str | None, limit: int
    ) -> DeltaPage[ProductClass]:
        return self._select_delta(conn, since, limit)

    def upsert(self, conn: sqlite3.Connection, product_class: ProductClass) -> None:
        conn.execute(
            """
            INSERT INTO product_classes (key, name_th, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                name_th = excluded.name_th,
                updated_at = excluded.updated_at
            """,
            (product_class.key, product_class.name_th, product_class.updated_at),
        )


class PriceAlertRepository(DeltaRepository[PriceAlert]):
    """A user's price alerts."""

    table = "price_alerts"
    columns = (
        "id",
        "user_id",
        "crop",
        "market_key",
        "variety",
        "size",
        "target_min",
        "target_max",
        "unit",
        "active",
        "created_at",
        "updated_at",
    )

    def _row(self, row: sqlite3.Row) -> PriceAlert:
        return PriceAlert.from_row(row)

    def get_delta_since(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        since: str | None,
        limit: int,
        crops: Sequence[str] = (),
    ) -> DeltaPage[PriceAlert]:
        where = ["user_id = ?"]
        params: list[Any] = [user_id]
        if crops:
            where.append(_in_clause("crop", crops))
            params.extend(crops)
        return self._select_delta(conn, since, limit, where, params)

    def get(self, conn: sqlite3.Connection, alert_id: str) -> PriceAlert | None:
        """Look up an alert by id regardless of owner."""
        cursor = conn.execute(
            f"SELECT {', '.join(self.columns)} FROM price_alerts WHERE id = ?", (alert_id,)
        )
        row = cursor.fetchone()
        return PriceAlert.from_row(row) if row else None

    def upsert(self, conn: sqlite3.Connection, alert: PriceAlert) -> None:
        """Insert the alert or overwrite the owner's existing row.

        The caller decides whether the write should happen at all; this
        method only persists it. ``created_at`` of an existing row is kept.
        """
        conn.execute(
            """
            INSERT INTO price_alerts (id, user_id, crop, market_key, variety, size,
                                      target_min, target_max, unit, active,
                                      created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                crop = excluded.crop,
                market_key = excluded.market_key,
                variety = excluded.variety,
                size = excluded.size,
                target_min = excluded.target_min,
                target_max = excluded.target_max,
                unit = excluded.unit,
                active = excluded.active,
                updated_at = excluded.updated_at
            WHERE price_alerts.user_id = excluded.user_id
            """,
            (
                alert.id,
                alert.user_id,
                alert.crop,
                alert.market_key,
                alert.variety,
                alert.size,
                alert.target_min,
                alert.target_max,
                alert.unit,
                1 if alert.active else 0,
                alert.created_at,
                alert.updated_at,
            ),
        )

    def delete(self, conn: sqlite3.Connection, user_id: str, alert_id: str) -> bool:
        cursor = conn.execute(
            "DELETE FROM price_alerts WHERE id = ? AND user_id = ?", (alert_id, user_id)
        )
        return cursor.rowcount > 0


class ShopTicketRepository(DeltaRepository[ShopTicket]):
    """A user's shop tickets and their status column."""

    table = "shop_tickets"
    columns = (
        "id",
        "user_id",
        "crop",
        "diagnosis_key",
        "severity",
        "recommended_classes",
        "dosage_note",
        "rai",
        "status",
        "shop_id",
        "created_at",
        "expires_at",
        "scanned_at",
        "completed_at",
        "hmac_sig",
        "updated_at",
    )

    def _row(self, row: sqlite3.Row) -> ShopTicket:
        return ShopTicket.from_row(row)

    def get_delta_since(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        since: str | None,
        limit: int,
        crops: Sequence[str] = (),
    ) -> DeltaPage[ShopTicket]:
        where = ["user_id = ?"]
        params: list[Any] = [user_id]
        if crops:
            where.append(_in_clause("crop", crops))
            params.extend(crops)
        return self._select_delta(conn, since, limit, where, params)

    def get(
        self, conn: sqlite3.Connection, ticket_id: str, user_id: str | None = None
    ) -> ShopTicket | None:
        """Look up a ticket by id, optionally scoped to its owner."""
        query = f"SELECT {', '.join(self.columns)} FROM shop_tickets WHERE id = ?"
        params: list[Any] = [ticket_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        row = conn.execute(query, params).fetchone()
        return ShopTicket.from_row(row) if row else None

    def upsert(self, conn: sqlite3.Connection, ticket: ShopTicket) -> bool:
        """Insert the ticket unless its id already exists.

        Tickets are create-only from the client side, so an existing row is
        left untouched.

        Returns:
            True if a row was inserted
        """
        cursor = conn.execute(
            """
            INSERT INTO shop_tickets (id, user_id, crop, diagnosis_key, severity,
                                      recommended_classes, dosage_note, rai, status, shop_id,
                                      created_at, expires_at, scanned_at, completed_at,
                                      hmac_sig, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (
                ticket.id,
                ticket.user_id,
                ticket.crop,
                ticket.diagnosis_key,
                ticket.severity,
                json.dumps(ticket.recommended_classes),
                ticket.dosage_note,
                ticket.rai,
                ticket.status,
                ticket.shop_id,
                ticket.created_at,
                ticket.expires_at,
                ticket.scanned_at,
                ticket.completed_at,
                ticket.hmac_sig,
                ticket.updated_at,
            ),
        )
        return cursor.rowcount > 0

    def set_status(
        self,
        conn: sqlite3.Connection,
        ticket_id: str,
        status: str,
        now: str,
        **columns: Any,
    ) -> bool:
        """Move a ticket to ``status`` and bump updated_at.

        Extra keyword arguments set additional columns (e.g. shop_id,
        scanned_at).
        """
        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [status, now]
        for name, value in columns.items():
            if name not in self.columns:
                raise ValueError(f"Unknown shop_tickets column: {name}")
            assignments.append(f"{name} = ?")
            params.append(value)
        params.append(ticket_id)

        cursor = conn.execute(
            f"UPDATE shop_tickets SET {', '.join(assignments)} WHERE id = ?", params
        )
        return cursor.rowcount > 0

    def expire_overdue(
        self,
        conn: sqlite3.Connection,
        now: str,
        open_states: Sequence[str],
        expired_state: str,
    ) -> int:
        """Mark every open ticket whose expires_at has passed as expired."""
        cursor = conn.execute(
            f"""
            UPDATE shop_tickets SET status = ?, updated_at = ?
            WHERE {_in_clause("status", open_states)} AND expires_at < ?
            """,
            [expired_state, now, *open_states, now],
        )
        return cursor.rowcount

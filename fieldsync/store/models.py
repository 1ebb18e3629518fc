"""
Row types for the entity store and outbox ledger.

Each dataclass mirrors one table and knows how to build itself from a
sqlite3.Row. ``to_dict`` returns the JSON shape sent to clients.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class Shop:
    """A participating shop (reference entity).

    Attributes:
        id: Server-assigned shop identifier
        name_th: Display name
        province_code: ADM1 code
        amphoe_code: ADM2 code
        tambon_code: ADM3 code
        is_active: Inactive shops are never synced
        updated_at: Change timestamp
    """

    id: int
    name_th: str
    updated_at: str
    province_code: str | None = None
    amphoe_code: str | None = None
    tambon_code: str | None = None
    address: str | None = None
    phone: str | None = None
    line_id: str | None = None
    referral_code: str | None = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Shop:
        return cls(
            id=row["id"],
            name_th=row["name_th"],
            updated_at=row["updated_at"],
            province_code=row["province_code"],
            amphoe_code=row["amphoe_code"],
            tambon_code=row["tambon_code"],
            address=row["address"],
            phone=row["phone"],
            line_id=row["line_id"],
            referral_code=row["referral_code"],
            is_active=bool(row["is_active"]),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("is_active")
        return data


@dataclass
class ProductClass:
    """A product taxonomy entry (reference entity)."""

    key: str
    name_th: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ProductClass:
        return cls(key=row["key"], name_th=row["name_th"], updated_at=row["updated_at"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PriceAlert:
    """A user's price alert (user entity)."""

    id: str
    user_id: str
    target_min: float
    target_max: float
    unit: str
    created_at: str
    updated_at: str
    crop: str | None = None
    market_key: str | None = None
    variety: str | None = None
    size: str | None = None
    active: bool = True

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> PriceAlert:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            crop=row["crop"],
            target_min=row["target_min"],
            target_max=row["target_max"],
            unit=row["unit"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            market_key=row["market_key"],
            variety=row["variety"],
            size=row["size"],
            active=bool(row["active"]),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("user_id")
        return data


@dataclass
class ShopTicket:
    """A user's shop ticket (user entity with a status lifecycle).

    ``status`` holds the stored string; use ``TicketStatus.parse`` to
    interpret it.
    """

    id: str
    user_id: str
    crop: str
    diagnosis_key: str
    status: str
    created_at: str
    expires_at: str
    updated_at: str
    severity: int | None = None
    recommended_classes: list[str] = field(default_factory=list)
    dosage_note: str | None = None
    rai: float | None = None
    shop_id: int | None = None
    scanned_at: str | None = None
    completed_at: str | None = None
    hmac_sig: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ShopTicket:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            crop=row["crop"],
            diagnosis_key=row["diagnosis_key"],
            status=row["status"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            updated_at=row["updated_at"],
            severity=row["severity"],
            recommended_classes=json.loads(row["recommended_classes"] or "[]"),
            dosage_note=row["dosage_note"],
            rai=row["rai"],
            shop_id=row["shop_id"],
            scanned_at=row["scanned_at"],
            completed_at=row["completed_at"],
            hmac_sig=row["hmac_sig"],
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        # Signature stays server-side
        data.pop("user_id")
        data.pop("hmac_sig")
        return data


@dataclass
class OutboxRecord:
    """Terminal outcome of one client mutation.

    Attributes:
        mutation_id: Client-generated idempotency key
        user_id: Owner of the mutation
        entity: Entity tag as submitted
        op: Operation as submitted
        status: "applied" or "error"
        message: Error message for status "error"
    """

    mutation_id: str
    user_id: str
    entity: str
    op: str
    status: str
    created_at: str
    updated_at: str
    message: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> OutboxRecord:
        return cls(
            mutation_id=row["mutation_id"],
            user_id=row["user_id"],
            entity=row["entity"],
            op=row["op"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message=row["message"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

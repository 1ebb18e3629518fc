"""
Client mutation envelope and per-entity payloads.

A client mutation arrives as an untyped envelope
``{mutation_id, user_id, entity, op, data, client_ts?}``. The envelope is
validated for the whole request; ``data`` is validated per mutation into one
payload type per (entity, op), so the applier only ever sees typed payloads.

Invariants:
    - An envelope without mutation_id or user_id never reaches the queue
    - Unknown entities, unsupported ops and malformed payloads become a
      MutationError for that mutation only
    - Client timestamps are normalized to the stored form before comparison

How to change safely:
    - Add a payload model and a PAYLOAD_TYPES entry for each new (entity, op)
    - Ignore unknown fields so older servers accept newer clients
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..clock import normalize_timestamp


class MutationError(Exception):
    """Domain-level rejection of a single mutation.

    Recorded in the outbox ledger as status "error"; never aborts the batch.
    """

    pass


class Entity(str, Enum):
    PRICE_ALERT = "price_alert"
    SHOP_TICKET_STATUS = "shop_ticket_status"
    SHOP_TICKET = "shop_ticket"


class MutationOp(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ClientMutation(BaseModel):
    """Mutation envelope as queued by an offline client.

    ``entity`` stays a plain string here: an unknown value is a per-item
    domain error, not a request validation failure.
    """

    mutation_id: str = Field(..., min_length=1, description="Client-generated idempotency key")
    user_id: str = Field(..., min_length=1)
    entity: str
    op: MutationOp
    data: dict[str, Any] = Field(default_factory=dict)
    client_ts: str | None = None


# SQLite INTEGER range
SQLITE_INT_MIN = -(2**63)
SQLITE_INT_MAX = 2**63 - 1


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)


def _normalize_optional_timestamp(value: str | None) -> str | None:
    if value is None:
        return None
    return normalize_timestamp(value)


class PriceAlertUpsert(_Payload):
    """Insert or update of a price alert."""

    id: str = Field(..., min_length=1)
    crop: str | None = None
    market_key: str | None = None
    variety: str | None = None
    size: str | None = None
    target_min: float
    target_max: float
    unit: str = Field(..., min_length=1)
    active: bool = True
    updated_at: str | None = None

    normalize_updated_at = field_validator("updated_at")(_normalize_optional_timestamp)

    @model_validator(mode="after")
    def _check_range(self) -> PriceAlertUpsert:
        if self.target_min > self.target_max:
            raise ValueError("target_min must not exceed target_max")
        return self


class PriceAlertDelete(_Payload):
    id: str = Field(..., min_length=1)


class TicketStatusChange(_Payload):
    """Client request to move a ticket to a new status."""

    id: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    updated_at: str | None = None

    normalize_updated_at = field_validator("updated_at")(_normalize_optional_timestamp)


class TicketCreate(_Payload):
    """Ticket created on the device while offline."""

    id: str = Field(..., min_length=1)
    crop: str = Field(..., min_length=1)
    diagnosis_key: str = Field(..., min_length=1)
    recommended_classes: list[str]
    severity: int | None = Field(default=None, ge=SQLITE_INT_MIN, le=SQLITE_INT_MAX)
    dosage_note: str | None = None
    rai: float | None = None
    shop_id: int | None = Field(default=None, ge=SQLITE_INT_MIN, le=SQLITE_INT_MAX)
    expires_at: str | None = None
    hmac_sig: str | None = None

    normalize_expires_at = field_validator("expires_at")(_normalize_optional_timestamp)


MutationPayload = Union[PriceAlertUpsert, PriceAlertDelete, TicketStatusChange, TicketCreate]

PAYLOAD_TYPES: dict[tuple[Entity, MutationOp], type[_Payload]] = {
    (Entity.PRICE_ALERT, MutationOp.INSERT): PriceAlertUpsert,
    (Entity.PRICE_ALERT, MutationOp.UPDATE): PriceAlertUpsert,
    (Entity.PRICE_ALERT, MutationOp.DELETE): PriceAlertDelete,
    (Entity.SHOP_TICKET_STATUS, MutationOp.INSERT): TicketStatusChange,
    (Entity.SHOP_TICKET_STATUS, MutationOp.UPDATE): TicketStatusChange,
    (Entity.SHOP_TICKET, MutationOp.INSERT): TicketCreate,
}


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        message = error["msg"]
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def parse_payload(mutation: ClientMutation) -> MutationPayload:
    """Validate a mutation's data into its typed payload.

    Raises:
        MutationError: If the entity or op is unsupported or data is invalid
    """
    try:
        entity = Entity(mutation.entity)
    except ValueError:
        raise MutationError(f"Unsupported entity: {mutation.entity}") from None

    payload_type = PAYLOAD_TYPES.get((entity, mutation.op))
    if payload_type is None:
        raise MutationError(f"Unsupported op '{mutation.op.value}' for {entity.value}")

    try:
        return payload_type.model_validate(mutation.data)
    except ValidationError as e:
        raise MutationError(f"Invalid {entity.value} payload: {_format_errors(e)}") from None

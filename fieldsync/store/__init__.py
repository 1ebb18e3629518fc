"""
Store module for FieldSync - entity tables and the outbox ledger.

This module handles:
- The SQLite database file, its schema, and transaction scopes
- Per-entity repositories with a uniform delta read
- The append-once outbox ledger keyed by mutation_id

Invariants:
    - Repositories never manage transactions themselves
    - Client-originated writes to user rows go through the queue only
    - SQLite uses WAL mode for concurrent reads during writes

How to change safely:
    - Use transactions for all multi-statement operations
    - Verify idempotency with duplicate submission tests
"""

from .database import Database, savepoint
from .models import OutboxRecord, PriceAlert, ProductClass, Shop, ShopTicket
from .outbox import OutboxLedger, OutboxStatus
from .repositories import (
    DeltaPage,
    PriceAlertRepository,
    ProductClassRepository,
    ShopRepository,
    ShopTicketRepository,
)

__all__ = [
    "Database",
    "savepoint",
    "OutboxRecord",
    "PriceAlert",
    "ProductClass",
    "Shop",
    "ShopTicket",
    "OutboxLedger",
    "OutboxStatus",
    "DeltaPage",
    "PriceAlertRepository",
    "ProductClassRepository",
    "ShopRepository",
    "ShopTicketRepository",
]

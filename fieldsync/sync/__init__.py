"""
Sync module for FieldSync - delta reads and the mutation queue.

This module handles:
- Cursor parsing and next_since derivation
- Bounded delta bundles per user (SyncCoordinator)
- Typed client mutation payloads and the per-entity applier
- Exactly-once batch processing against the outbox ledger (QueueCoordinator)
- Non-client ticket transitions (scan, complete, expire)

Invariants:
    - Sync never writes; the queue never reads on behalf of a client
    - Ticket terminal states are defined once, in tickets.TERMINAL_STATES

How to change safely:
    - Add new client entities to mutations.PAYLOAD_TYPES and the applier together
    - Add new synced collections to delta.DeltaReader
"""

from .applier import ApplyOutcome, MutationApplier, is_stale
from .cursor import SyncRequestError, next_cursor, parse_list, parse_since
from .delta import DeltaReader, SyncBundle, SyncCoordinator, align_pages
from .mutations import ClientMutation, Entity, MutationError, MutationOp, parse_payload
from .queue import MutationResult, QueueCoordinator, QueueResult
from .tickets import TERMINAL_STATES, TicketLifecycle, TicketStatus, TicketTransitionError

__all__ = [
    "ApplyOutcome",
    "MutationApplier",
    "is_stale",
    "SyncRequestError",
    "next_cursor",
    "parse_list",
    "parse_since",
    "DeltaReader",
    "SyncBundle",
    "SyncCoordinator",
    "align_pages",
    "ClientMutation",
    "Entity",
    "MutationError",
    "MutationOp",
    "parse_payload",
    "MutationResult",
    "QueueCoordinator",
    "QueueResult",
    "TERMINAL_STATES",
    "TicketLifecycle",
    "TicketStatus",
    "TicketTransitionError",
]

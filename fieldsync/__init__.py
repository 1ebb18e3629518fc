"""
FieldSync - delta sync and offline mutation queue for mostly-offline clients.

This package keeps a mobile client eventually consistent with a server-held
SQLite store:
- Pull: incremental changes to shared reference data and to the caller's own
  records, bounded per collection and resumable through a cursor
- Push: batches of mutations queued while offline, applied exactly once per
  mutation_id with last-write-wins conflict resolution

Architecture:
    ┌─────────────┐   GET /sync    ┌─────────────────┐     ┌──────────────┐
    │   Client    │───────────────▶│ SyncCoordinator │────▶│ Delta Reader │
    │  (offline)  │                └─────────────────┘     └──────┬───────┘
    │             │  POST /queue   ┌─────────────────┐            │
    │             │───────────────▶│QueueCoordinator │            ▼
    └─────────────┘                └───────┬─────────┘     ┌──────────────┐
                                           │               │ Entity Store │
                        ┌──────────────────┼──────────┐    │   (SQLite)   │
                        ▼                  ▼          │    └──────────────┘
                 ┌─────────────┐   ┌───────────────┐  │           ▲
                 │Outbox Ledger│   │MutationApplier│──┴───────────┘
                 └─────────────┘   └───────────────┘

Invariants:
    - A cursor returned as next_since is >= every updated_at it covers
    - At most one outbox record exists per mutation_id
    - Terminal ticket states never change through client mutations
    - Clients change their own rows only through the queue

How to change safely:
    - New entities need a repository, a payload model and an applier branch
    - Keep stored timestamps in the single fixed-width UTC form
    - Verify idempotency with duplicate submission tests
"""

from ._version import __version__

__all__ = ["__version__"]

"""
Sync cursor handling.

A cursor is the stored-form timestamp of the newest row a client has fully
observed. Clients treat it as opaque and resend it verbatim as ``since``.
"""

from __future__ import annotations

from collections.abc import Iterable

from ..clock import normalize_timestamp


class SyncRequestError(Exception):
    """Sync request is invalid (missing user, malformed cursor)."""

    pass


def parse_since(since: str | None) -> str | None:
    """Normalize a client cursor.

    An absent or empty cursor means "from the beginning".

    Raises:
        SyncRequestError: If the cursor is not an ISO-8601 timestamp
    """
    if since is None or not since.strip():
        return None
    try:
        return normalize_timestamp(since)
    except ValueError:
        raise SyncRequestError(f"Invalid since cursor: {since!r}") from None


def parse_list(value: str | Iterable[str] | None) -> list[str]:
    """Split a comma-separated filter into distinct, non-empty values."""
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else value
    seen: dict[str, None] = {}
    for item in items:
        item = item.strip()
        if item:
            seen.setdefault(item, None)
    return list(seen)


def next_cursor(updated_at: Iterable[str], server_time: str, since: str | None) -> str:
    """Derive next_since for a response.

    The newest updated_at among the returned rows; with no rows, the server
    time. Never moves behind the cursor the client supplied.
    """
    newest = max(updated_at, default=None)
    if newest is not None:
        return newest
    if since is not None and since > server_time:
        return since
    return server_time

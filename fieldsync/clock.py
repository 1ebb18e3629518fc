"""
Clock and timestamp helpers.

Every timestamp persisted by FieldSync uses one fixed-width UTC form
(``YYYY-MM-DDTHH:MM:SS.ffffffZ``) so that plain string comparison in SQL
matches chronological order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the stored timestamp form.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # strftime does not zero-pad years before 1000 on every platform
    naive = value.astimezone(timezone.utc).replace(tzinfo=None)
    return naive.isoformat(timespec="microseconds") + "Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts a trailing ``Z``, an explicit offset, or no offset (UTC).

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp or does
            not fit the UTC range
    """
    text = value.strip()
    if not text:
        raise ValueError("empty timestamp")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        raise ValueError(f"timestamp out of range: {value!r}") from None


def normalize_timestamp(value: str) -> str:
    """Re-render a client-supplied timestamp in the stored form."""
    return format_timestamp(parse_timestamp(value))


def now_timestamp(clock: Clock) -> str:
    return format_timestamp(clock.now())

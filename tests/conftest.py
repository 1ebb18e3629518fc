"""
Shared test fixtures for FieldSync.

Tests run against a real SQLite file in a temporary directory and a
ticking clock, so every timestamp a test observes is distinct and ordered.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from fieldsync.store.database import Database


class TickingClock:
    """Clock that advances by ``step`` on every read."""

    def __init__(
        self,
        start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc),
        step: timedelta = timedelta(seconds=1),
    ):
        self.current = start
        self.step = step

    def now(self) -> datetime:
        value = self.current
        self.current += self.step
        return value

    def advance(self, delta: timedelta) -> None:
        self.current += delta


@pytest.fixture
def clock():
    """Deterministic clock starting at 2025-01-01T00:00:00Z."""
    return TickingClock()


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db(data_dir):
    """Initialized database in the temporary directory."""
    database = Database(os.path.join(data_dir, "app.db"), wal_mode=False)
    database.initialize()
    return database

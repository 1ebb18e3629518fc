"""
SQLite database for the FieldSync entity store and outbox ledger.

This module owns the single SQLite file that holds:
- Reference entities (shops, product_classes), shared by every client
- User entities (price_alerts, shop_tickets), owned by one user_id
- The outbox_log ledger, one row per processed mutation_id

Invariants:
    - Every write happens inside an explicit transaction
    - Writers use BEGIN IMMEDIATE so concurrent writers serialize on the file
    - Readers use a deferred transaction so a sync call sees one snapshot
    - Timestamps are stored as fixed-width UTC ISO strings (see clock.py)

How to change safely:
    - Schema changes must be additive (CREATE ... IF NOT EXISTS, new columns nullable)
    - Every new user-entity table needs (user_id, updated_at) and (updated_at) indexes
    - Bump SCHEMA_VERSION when the DDL changes

Table schema:
    shops:
        - id INTEGER PRIMARY KEY
        - name_th, province_code, amphoe_code, tambon_code, address, phone,
          line_id, referral_code TEXT
        - is_active INTEGER (0/1)
        - updated_at TEXT

    product_classes:
        - key TEXT PRIMARY KEY
        - name_th TEXT
        - updated_at TEXT

    price_alerts:
        - id TEXT PRIMARY KEY (client-assigned)
        - user_id TEXT
        - crop, market_key, variety, size TEXT (nullable), unit TEXT
        - target_min, target_max REAL
        - active INTEGER (0/1)
        - created_at, updated_at TEXT

    shop_tickets:
        - id TEXT PRIMARY KEY
        - user_id TEXT
        - crop, diagnosis_key, dosage_note, hmac_sig TEXT
        - severity INTEGER, rai REAL
        - recommended_classes TEXT (JSON list)
        - status TEXT (issued|scanned|completed|canceled|expired)
        - shop_id INTEGER
        - created_at, expires_at, scanned_at, completed_at, updated_at TEXT

    outbox_log:
        - mutation_id TEXT PRIMARY KEY
        - user_id, entity, op, status, message TEXT
        - created_at, updated_at TEXT
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


class Database:
    """SQLite file holding the entity store and the outbox ledger.

    Connections are opened per unit of work and closed afterwards. SQLite
    handles concurrent readers via WAL mode; writers serialize through
    BEGIN IMMEDIATE.

    Example:
        >>> db = Database("/var/lib/fieldsync/app.db")
        >>> db.initialize()
        >>> with db.write_transaction() as conn:
        ...     conn.execute("DELETE FROM price_alerts WHERE id = ?", ("a1",))
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database handle.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection in autocommit mode."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def write_transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE ... COMMIT.

        Any exception rolls the whole transaction back and propagates.
        """
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    @contextmanager
    def read_transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of reads against one consistent snapshot."""
        with self.connect() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.execute("COMMIT")

    def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self.connect() as conn:
            self._create_schema(conn)
        logger.info("Initialized database", extra={"path": str(self.path)})

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );

            -- Reference entities
            CREATE TABLE IF NOT EXISTS shops (
                id INTEGER PRIMARY KEY,
                name_th TEXT NOT NULL,
                province_code TEXT,
                amphoe_code TEXT,
                tambon_code TEXT,
                address TEXT,
                phone TEXT,
                line_id TEXT,
                referral_code TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_shops_updated ON shops(updated_at);

            CREATE TABLE IF NOT EXISTS product_classes (
                key TEXT PRIMARY KEY,
                name_th TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_product_classes_updated
                ON product_classes(updated_at);

            -- User entities
            CREATE TABLE IF NOT EXISTS price_alerts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                crop TEXT,
                market_key TEXT,
                variety TEXT,
                size TEXT,
                target_min REAL NOT NULL,
                target_max REAL NOT NULL,
                unit TEXT NOT NULL,
                active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_price_alerts_user_updated
                ON price_alerts(user_id, updated_at);

            CREATE TABLE IF NOT EXISTS shop_tickets (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                crop TEXT NOT NULL,
                diagnosis_key TEXT NOT NULL,
                severity INTEGER,
                recommended_classes TEXT NOT NULL DEFAULT '[]',
                dosage_note TEXT,
                rai REAL,
                status TEXT NOT NULL DEFAULT 'issued',
                shop_id INTEGER,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                scanned_at TEXT,
                completed_at TEXT,
                hmac_sig TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_shop_tickets_user_updated
                ON shop_tickets(user_id, updated_at);
            CREATE INDEX IF NOT EXISTS idx_shop_tickets_status_expiry
                ON shop_tickets(status, expires_at);

            -- Outbox ledger, one row per mutation_id
            CREATE TABLE IF NOT EXISTS outbox_log (
                mutation_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                entity TEXT NOT NULL,
                op TEXT NOT NULL,
                status TEXT NOT NULL,
                message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_outbox_log_user ON outbox_log(user_id, created_at);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'));
        """)


@contextmanager
def savepoint(conn: sqlite3.Connection, name: str) -> Iterator[None]:
    """Scope a block to a SAVEPOINT inside an open transaction.

    On exception the block's writes are rolled back to the savepoint and the
    exception propagates; the enclosing transaction stays open.
    """
    conn.execute(f"SAVEPOINT {name}")
    try:
        yield
    except BaseException:
        conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
        conn.execute(f"RELEASE SAVEPOINT {name}")
        raise
    else:
        conn.execute(f"RELEASE SAVEPOINT {name}")

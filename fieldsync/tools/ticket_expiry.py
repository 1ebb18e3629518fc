"""
Ticket expiry sweep.

Moves every open ticket whose expires_at has passed to "expired". Meant to
run from cron once an hour; running it more often is harmless.

Usage:
    fieldsync-expire-tickets
    fieldsync-expire-tickets --db-path /var/lib/fieldsync/app.db -v
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ..config import StorageConfig
from ..store.database import Database
from ..sync.tickets import TicketLifecycle

logger = logging.getLogger(__name__)


async def run_expiry(db: Database) -> int:
    """Ensure the schema and run one expiry sweep.

    Returns:
        Number of tickets expired
    """
    db.initialize()
    return await TicketLifecycle(db).expire_overdue_tickets()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the expiry sweep."""
    storage = StorageConfig()

    parser = argparse.ArgumentParser(description="Expire overdue FieldSync shop tickets")
    parser.add_argument(
        "--db-path",
        default=storage.path,
        help=f"SQLite database file (default: {storage.path})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    db = Database(
        args.db_path,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
        cache_size_pages=storage.cache_size_pages,
    )

    try:
        count = asyncio.run(run_expiry(db))
    except Exception as e:
        logger.error(f"Expiry sweep failed: {e}", exc_info=True)
        print(f"Expiry sweep failed: {e}")
        sys.exit(1)

    print(f"Expired tickets: {count}")


if __name__ == "__main__":
    main()

"""
Reference data loader.

Loads shops and product classes from a JSON file into the entity store.
Every written row is stamped with a fresh server updated_at, so clients
receive the seeded data through their next delta sync.

File format:
    {
        "shops": [{"id": 1, "name_th": "...", "province_code": "10", ...}],
        "product_classes": [{"key": "fungicide", "name_th": "..."}]
    }

Usage:
    fieldsync-seed reference.json
    fieldsync-seed reference.json --db-path /var/lib/fieldsync/app.db

Invariants:
    - Rows are upserted by primary key; re-running a file is safe
    - Seeded rows get strictly increasing updated_at values
"""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ..clock import Clock, SystemClock, format_timestamp
from ..config import StorageConfig
from ..store.database import Database
from ..store.models import ProductClass, Shop
from ..store.repositories import ProductClassRepository, ShopRepository

logger = logging.getLogger(__name__)


class ShopSeed(BaseModel):
    id: int
    name_th: str = Field(..., min_length=1)
    province_code: str | None = None
    amphoe_code: str | None = None
    tambon_code: str | None = None
    address: str | None = None
    phone: str | None = None
    line_id: str | None = None
    referral_code: str | None = None
    is_active: bool = True


class ProductClassSeed(BaseModel):
    key: str = Field(..., min_length=1)
    name_th: str = Field(..., min_length=1)


class SeedFile(BaseModel):
    """Contents of a reference data file."""

    shops: list[ShopSeed] = Field(default_factory=list)
    product_classes: list[ProductClassSeed] = Field(default_factory=list)


@dataclass
class SeedResult:
    shops: int = 0
    product_classes: int = 0


class ReferenceSeeder:
    """Writes reference rows through the reference repositories.

    Example:
        >>> seeder = ReferenceSeeder(db)
        >>> result = seeder.load(SeedFile.model_validate(data))
        >>> result.shops
        12
    """

    def __init__(
        self,
        db: Database,
        clock: Clock | None = None,
        shops: ShopRepository | None = None,
        product_classes: ProductClassRepository | None = None,
    ) -> None:
        self.db = db
        self.clock = clock or SystemClock()
        self.shops = shops or ShopRepository()
        self.product_classes = product_classes or ProductClassRepository()

    def load(self, seed: SeedFile) -> SeedResult:
        """Upsert every row of ``seed`` in one transaction."""
        base = self.clock.now()
        stamps = (format_timestamp(base + timedelta(microseconds=i)) for i in itertools.count())

        with self.db.write_transaction() as conn:
            for shop in seed.shops:
                self.shops.upsert(conn, Shop(updated_at=next(stamps), **shop.model_dump()))
            for product_class in seed.product_classes:
                self.product_classes.upsert(
                    conn, ProductClass(updated_at=next(stamps), **product_class.model_dump())
                )

        result = SeedResult(shops=len(seed.shops), product_classes=len(seed.product_classes))
        logger.info(
            "Seeded reference data",
            extra={"shops": result.shops, "product_classes": result.product_classes},
        )
        return result


def load_seed_file(path: str | Path) -> SeedFile:
    """Read and validate a reference data file.

    Raises:
        ValueError: If the file is not valid JSON or does not match the format
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return SeedFile.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Invalid seed file {path}: {e}") from e


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the reference data loader."""
    storage = StorageConfig()

    parser = argparse.ArgumentParser(description="Load FieldSync reference data from JSON")
    parser.add_argument("file", help="Path to the reference data JSON file")
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

    try:
        seed = load_seed_file(args.file)
    except (OSError, ValueError) as e:
        print(f"Seed failed: {e}", file=sys.stderr)
        sys.exit(1)

    db = Database(
        args.db_path,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
        cache_size_pages=storage.cache_size_pages,
    )
    db.initialize()

    result = ReferenceSeeder(db).load(seed)
    print(f"Seeded {result.shops} shops and {result.product_classes} product classes")


if __name__ == "__main__":
    main()

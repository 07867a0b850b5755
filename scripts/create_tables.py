#!/usr/bin/env python
"""Script to create the demo reporting tables (and optionally seed them)."""

import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy import inspect

from reportql.core.config import get_settings
from reportql.db.base import Base, get_engine

# Import ALL models so their tables are registered with Base.metadata
from reportql.db.models import Customer, Order, Product  # noqa: F401
from reportql.db.seed import seed

settings = get_settings()


def create_tables(drop_existing: bool = False, seed_orders: int = 0):
    """Create all reporting tables."""
    engine = get_engine(settings.database_url, echo=True)

    if drop_existing:
        print("Dropping existing tables...")
        Base.metadata.drop_all(engine)
        print("✓ Existing tables dropped")

    Base.metadata.create_all(engine)
    print("✓ All tables created successfully")

    if seed_orders:
        seed(engine, orders=seed_orders)
        print(f"✓ Seeded {seed_orders} demo orders")

    tables = sorted(inspect(engine).get_table_names())
    print(f"\nTables in database: {', '.join(tables)}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Create ReportQL demo tables")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing tables before creating",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        metavar="ORDERS",
        help="Insert this many fake orders after creating the tables",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    create_tables(drop_existing=args.drop, seed_orders=args.seed)

#!/usr/bin/env python3
"""Create (or recreate) the booking tables and optionally seed sample data."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``booking`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from booking import create_app
from booking.extensions import db


def init_database(drop: bool = False) -> list[str]:
    app = create_app()
    with app.app_context():
        if drop:
            db.drop_all()
            print("🗑️  Dropped existing booking tables")
        db.create_all()
        tables = sorted(db.metadata.tables)
        print(f"✅ Booking tables ready on {db.engine.dialect.name}: {', '.join(tables)}")
    return tables


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--drop", action="store_true", help="drop every booking table first")
    parser.add_argument("--seed", action="store_true", help="add a sample staff member, client and services")
    args = parser.parse_args()

    init_database(drop=args.drop)
    if args.seed:
        from seed_schedule import seed_schedule

        seed_schedule()


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Seed the listing id counter from listings that already exist.

Run this once against a database whose listings were created before the
counter table existed, so the first allocated id does not collide with an
existing row. The counter is never moved backwards.

Usage:
    python scripts/seed_id_counter.py [--db PATH] [--threshold N] [--name NAME]
"""

import argparse
import sqlite3
from datetime import datetime, timezone
from pathlib import Path


DEFAULT_DB_PATH = Path("data/exclusive_listings.db")
DEFAULT_THRESHOLD = 1_000_000
DEFAULT_COUNTER = "exclusive_listing"


def seed(db_path: Path, threshold: int, name: str) -> None:
    """Raise the counter to the highest self-issued listing id."""
    if not db_path.exists():
        print(f"Database not found at {db_path}")
        return

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute(
            "SELECT COALESCE(MAX(id), 0) FROM listings WHERE id > 0 AND id < ?",
            (threshold,),
        )
        highest = cursor.fetchone()[0]

        cursor.execute("SELECT last_value FROM listing_id_counters WHERE name = ?", (name,))
        row = cursor.fetchone()
        now = datetime.now(timezone.utc).isoformat(sep=" ")

        if row is None:
            cursor.execute(
                "INSERT INTO listing_id_counters (name, last_value, updated_at) VALUES (?, ?, ?)",
                (name, highest, now),
            )
            print(f"Created counter {name!r} at {highest}")
        elif row[0] < highest:
            cursor.execute(
                "UPDATE listing_id_counters SET last_value = ?, updated_at = ? WHERE name = ?",
                (highest, now, name),
            )
            print(f"Raised counter {name!r} from {row[0]} to {highest}")
        else:
            print(f"Counter {name!r} already at {row[0]} (highest listing id {highest})")

        conn.commit()
        print(f"\nNext allocated id will be {max(highest, row[0] if row else 0) + 1}.")

    except Exception as e:
        conn.rollback()
        print(f"Seeding failed: {e}")
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Seed the listing id counter from existing listings"
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=DEFAULT_DB_PATH,
        help=f"Path to SQLite database (default: {DEFAULT_DB_PATH})",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=DEFAULT_THRESHOLD,
        help=f"Upper bound of self-issued ids (default: {DEFAULT_THRESHOLD})",
    )
    parser.add_argument(
        "--name",
        default=DEFAULT_COUNTER,
        help=f"Counter name (default: {DEFAULT_COUNTER})",
    )
    args = parser.parse_args()

    seed(args.db, args.threshold, args.name)

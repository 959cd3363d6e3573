#!/usr/bin/env python3
"""
Remove sync operations that exhausted their retries.

Prints a breakdown by entity and operation before deleting, so the cause can
be fixed first.

Usage:
    python scripts/clean_failed_sync.py [--db PATH] [--dry-run]
"""

import argparse
import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from isbnscout.sync_queue import SyncQueue
from scout_shared.database import DatabaseManager

DEFAULT_DB = Path(os.getenv("ISBNSCOUT_DB_PATH", str(Path.home() / ".isbnscout" / "isbnscout.db")))


def main():
    parser = argparse.ArgumentParser(description="Delete permanently failed sync operations")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB, help="Path to the database")
    parser.add_argument("--dry-run", action="store_true", help="Only show what would be removed")
    args = parser.parse_args()

    db = DatabaseManager(args.db)
    try:
        breakdown = db.sync_failure_breakdown()
        if not breakdown:
            print("No failed sync operations.")
            return
        print("Failed operations:")
        for key, count in sorted(breakdown.items(), key=lambda pair: -pair[1]):
            print(f"  {count:>5}  {key}")
        if args.dry_run:
            print("\nDry run, nothing removed.")
            return
        result = SyncQueue(db).clean_failed()
        print(f"\nRemoved {result['removed']} failed operation(s).")
    finally:
        db.close()


if __name__ == "__main__":
    main()

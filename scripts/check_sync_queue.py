#!/usr/bin/env python3
"""
Show what is waiting in the offline sync queue.

Usage:
    python scripts/check_sync_queue.py [--db PATH] [--failed]
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
    parser = argparse.ArgumentParser(description="Inspect the sync queue")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB, help="Path to the database")
    parser.add_argument("--failed", action="store_true", help="List items that gave up retrying")
    args = parser.parse_args()

    db = DatabaseManager(args.db)
    queue = SyncQueue(db)
    try:
        status = queue.status()
        print("=" * 60)
        print("SYNC QUEUE")
        print("=" * 60)
        print(f"  Pending:   {status['pending']}")
        print(f"  Failed:    {status['failed']}")
        print(f"  Last sync: {status['last_sync'] or 'never'}")

        items = queue.failed() if args.failed else queue.pending(limit=20)
        if items:
            print()
            print("Failed items:" if args.failed else "Next up:")
            for item in items:
                error = f"  ({item.error})" if item.error else ""
                print(f"  #{item.id:<5} {item.entity:<15} {item.operation:<12} retries={item.retry_count}{error}")
    finally:
        db.close()


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Delete every account except the ones named with --keep.

Books, listings, inventory, alerts and tokens go with each account.

Usage:
    python scripts/cleanup_users.py --keep owner@example.com [--keep ...] [--yes]
"""

import argparse
import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from scout_shared.database import DatabaseManager

DEFAULT_DB = Path(os.getenv("ISBNSCOUT_DB_PATH", str(Path.home() / ".isbnscout" / "isbnscout.db")))


def main():
    parser = argparse.ArgumentParser(description="Remove test accounts")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB, help="Path to the database")
    parser.add_argument("--keep", action="append", required=True, metavar="EMAIL", help="Account to keep")
    parser.add_argument("--yes", action="store_true", help="Don't ask for confirmation")
    args = parser.parse_args()

    keep = {email.strip().lower() for email in args.keep}
    db = DatabaseManager(args.db)
    try:
        doomed = [user for user in db.list_users() if user.email.lower() not in keep]
        if not doomed:
            print("Nothing to delete.")
            return
        print(f"Keeping: {', '.join(sorted(keep))}")
        print(f"Deleting {len(doomed)} account(s):")
        for user in doomed:
            print(f"  {user.id:>4}  {user.email}")
        if not args.yes:
            answer = input("\nProceed? [y/N] ").strip().lower()
            if answer != "y":
                print("Aborted.")
                return
        for user in doomed:
            db.delete_user(user.id)
        print(f"✓ Deleted {len(doomed)} account(s)")
    finally:
        db.close()


if __name__ == "__main__":
    main()

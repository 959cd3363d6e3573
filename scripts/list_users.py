#!/usr/bin/env python3
"""List accounts with their plan and trial dates."""

import argparse
import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from isbnscout.subscriptions import check_subscription_access
from scout_shared.database import DatabaseManager

DEFAULT_DB = Path(os.getenv("ISBNSCOUT_DB_PATH", str(Path.home() / ".isbnscout" / "isbnscout.db")))


def main():
    parser = argparse.ArgumentParser(description="List ISBN Scout users")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB, help="Path to the database")
    args = parser.parse_args()

    db = DatabaseManager(args.db)
    try:
        users = db.list_users()
        print(f"{'ID':>4}  {'Email':<32} {'Tier':<10} {'Status':<10} {'Access':<7} Books")
        print("-" * 80)
        for user in users:
            access = check_subscription_access(user)
            print(
                f"{user.id:>4}  {user.email:<32} {user.subscription_tier:<10} "
                f"{user.subscription_status:<10} {'yes' if access.has_access else 'no':<7} {db.count_books(user.id)}"
            )
        print(f"\nTotal: {len(users)} user(s)")
    finally:
        db.close()


if __name__ == "__main__":
    main()

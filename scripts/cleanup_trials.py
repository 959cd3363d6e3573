#!/usr/bin/env python3
"""
Show visitor trial usage and drop trial records nobody has touched in a while.

Usage:
    python scripts/cleanup_trials.py [--db PATH] [--days 90] [--dry-run]
"""

import argparse
import logging
import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from isbnscout.trial import TRIAL_RETENTION_DAYS, TrialService
from scout_shared.database import DatabaseManager

DEFAULT_DB = Path(os.getenv("ISBNSCOUT_DB_PATH", str(Path.home() / ".isbnscout" / "isbnscout.db")))


def main():
    parser = argparse.ArgumentParser(description="Report and prune anonymous trial records")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB, help="Path to the database")
    parser.add_argument("--days", type=int, default=TRIAL_RETENTION_DAYS, help="Keep records newer than this")
    parser.add_argument("--dry-run", action="store_true", help="Only print the stats")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    db = DatabaseManager(args.db)
    try:
        trials = TrialService(db)
        stats = trials.get_trial_stats()
        print("Visitor trials:")
        for key, value in stats.items():
            print(f"  {key:<20} {value}")
        if args.dry_run:
            print("\nDry run, nothing removed.")
            return
        removed = trials.cleanup_old_trials(args.days)
        print(f"\nRemoved {removed} trial record(s) older than {args.days} days.")
    finally:
        db.close()


if __name__ == "__main__":
    main()

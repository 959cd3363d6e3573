#!/usr/bin/env python3
"""
Run every active repricing rule for Pro and Enterprise accounts.

Each active listing with a rule is checked against the current market price
and moved within the rule's bounds. Meant to run from cron:

    0 * * * * cd /srv/isbnscout && python scripts/run_repricing.py

The database and marketplace keys come from the same environment as the
API server (ISBNSCOUT_DB_PATH, EBAY_APP_ID, ...).
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from isbnscout.errors import ScoutError
from isbnscout.subscriptions import get_subscription_limits
from isbnscout_web.api.dependencies import build_service

logger = logging.getLogger("run_repricing")


def main():
    parser = argparse.ArgumentParser(description="Reprice listings for subscribers with repricing rules")
    parser.add_argument("--user", metavar="EMAIL", help="Only reprice this account")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    service = build_service()
    changed, failed = 0, 0
    try:
        users = [
            user for user in service.db.list_users()
            if get_subscription_limits(user.subscription_tier).repricing
            and user.subscription_status == "active"
        ]
        if args.user:
            users = [user for user in users if user.email.lower() == args.user.strip().lower()]
        if not users:
            print("No accounts with repricing enabled.")
            return

        for user in users:
            try:
                results = service.reprice_all(user)
            except ScoutError as exc:
                logger.error("Repricing for user %s failed: %s", user.id, exc)
                continue
            for result in results:
                if not result.success:
                    failed += 1
                    print(f"  ✗ {user.email} listing {result.listing_id}: {result.error_message or result.reason}")
                elif result.new_price != result.old_price:
                    changed += 1
                    print(f"  {user.email} listing {result.listing_id}: "
                          f"£{result.old_price:.2f} -> £{result.new_price:.2f} ({result.reason})")
    finally:
        service.close()
    print(f"Repriced {changed} listing(s), {failed} failed")


if __name__ == "__main__":
    main()

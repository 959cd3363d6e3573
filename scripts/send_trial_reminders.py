#!/usr/bin/env python3
"""
Email users whose free trial is about to end, or ended today.

Reminders go out 3 days and 1 day before expiry, and once on the day the
trial ends. Meant to run once a day from cron:

    0 9 * * * cd /srv/isbnscout && python scripts/send_trial_reminders.py
"""

import argparse
import logging
import os
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from isbnscout.mailer import MailerError, ResendMailer
from scout_shared.database import DatabaseManager
from scout_shared.utils import isoformat, parse_timestamp, utc_now

load_dotenv()

DEFAULT_DB = Path(os.getenv("ISBNSCOUT_DB_PATH", str(Path.home() / ".isbnscout" / "isbnscout.db")))
REMINDER_DAYS = (3, 1)

logger = logging.getLogger("send_trial_reminders")


def send_reminders(db: DatabaseManager, mailer: ResendMailer, dry_run: bool = False) -> int:
    now = utc_now()
    sent = 0

    for days in REMINDER_DAYS:
        start = now + timedelta(days=days - 1)
        end = now + timedelta(days=days)
        for user in db.users_with_trial_ending_between(isoformat(start), isoformat(end)):
            print(f"  {days}-day reminder -> {user.email}")
            if dry_run:
                continue
            try:
                mailer.send_trial_expiring(user.username, user.email, days, parse_timestamp(user.trial_ends_at))
                sent += 1
            except MailerError as exc:
                logger.error("Reminder to %s failed: %s", user.email, exc)

    for user in db.users_with_trial_ending_between(isoformat(now - timedelta(days=1)), isoformat(now)):
        print(f"  expired notice -> {user.email}")
        if dry_run:
            continue
        try:
            mailer.send_trial_expired(user.username, user.email)
            sent += 1
        except MailerError as exc:
            logger.error("Expiry notice to %s failed: %s", user.email, exc)

    return sent


def main():
    parser = argparse.ArgumentParser(description="Send trial expiry reminders")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB, help="Path to the database")
    parser.add_argument("--dry-run", action="store_true", help="List recipients without sending")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    mailer = ResendMailer()
    if not mailer.enabled and not args.dry_run:
        print("RESEND_API_KEY is not set; nothing will be sent.", file=sys.stderr)
        sys.exit(1)

    db = DatabaseManager(args.db)
    try:
        sent = send_reminders(db, mailer, dry_run=args.dry_run)
    finally:
        db.close()
    print(f"Sent {sent} email(s)")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Check that RESEND_API_KEY is set and accepted, optionally sending a test email."""

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
import requests

from isbnscout.mailer import MailerError, ResendMailer

load_dotenv()


def main():
    parser = argparse.ArgumentParser(description="Verify the Resend API key")
    parser.add_argument("--send-to", metavar="EMAIL", help="Also send a test message here")
    args = parser.parse_args()

    mailer = ResendMailer()
    if not mailer.enabled:
        print("✗ RESEND_API_KEY is not set")
        sys.exit(1)

    try:
        ok = mailer.check_api_key()
    except requests.RequestException as exc:
        print(f"✗ Could not reach Resend: {exc}")
        sys.exit(1)
    if not ok:
        print("✗ Resend rejected the API key")
        sys.exit(1)
    print(f"✓ API key accepted (sender: {mailer.sender})")

    if args.send_to:
        try:
            mailer.send(args.send_to, "ISBN Scout test email", "<p>Resend is configured correctly.</p>")
        except MailerError as exc:
            print(f"✗ Test email failed: {exc}")
            sys.exit(1)
        print(f"✓ Test email sent to {args.send_to}")


if __name__ == "__main__":
    main()

from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

from scout_shared.database import DatabaseManager
from scout_shared.price_cache import ASSUMED_COST, PriceCache
from scout_shared.utils import isoformat, normalise_isbn, read_isbn_csv, utc_now

from .scanner import ISBN_BARCODE, KeyboardWedgeBuffer, iter_barcodes
from .sync_queue import SyncQueue, build_target

DEFAULT_DB_PATH = Path.home() / ".isbnscout" / "isbnscout.db"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="isbnscout",
        description="Scan ISBN barcodes offline and sync them to an ISBN Scout server.",
    )
    parser.add_argument(
        "--database",
        type=Path,
        default=Path(os.getenv("ISBNSCOUT_DB_PATH", DEFAULT_DB_PATH)),
        help="Path to the SQLite database (default: ~/.isbnscout/isbnscout.db).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Read barcodes from a keyboard-wedge scanner on stdin.")
    scan.add_argument("--cost", type=float, default=None, help="What you paid for each book, in pounds.")
    scan.add_argument("--timeout", type=float, default=0.1, help="Inter-character timeout in seconds (default: 0.1).")
    scan.add_argument("--file", type=Path, default=None, help="Queue every ISBN in a CSV export instead of reading stdin.")

    sync = sub.add_parser("sync", help="Push queued scans to the remote server once.")
    sync.add_argument("--remote", default=os.getenv("SYNC_REMOTE_URL"), help="Base URL of the ISBN Scout server.")
    sync.add_argument("--token", default=os.getenv("SYNC_REMOTE_TOKEN"), help="Bearer token for the remote server.")

    sub.add_parser("queue-status", help="Show pending and failed sync operations.")
    return parser.parse_args(argv)


def _queue_scan(cache: PriceCache, queue: SyncQueue, barcode: str, cost: Optional[float]) -> None:
    result = cache.lookup_offline(barcode)
    profit = result.profit
    if profit is not None and cost is not None:
        profit = round(profit + ASSUMED_COST - cost, 2)
    price = result.ebay_price or result.amazon_price
    price_text = f"£{price:.2f}" if price is not None else "-"
    print(f"{barcode}  {result.recommendation.upper():7}  {price_text:>8}  {result.reason}")
    queue.enqueue("book", "create", {
        "isbn": barcode,
        "title": result.title or f"Book with ISBN {barcode}",
        "author": result.author,
        "ebay_price": result.ebay_price,
        "amazon_price": result.amazon_price,
        "your_cost": cost,
        "profit": profit,
        "scanned_at": isoformat(utc_now()),
    })


def run_scan(db: DatabaseManager, stream: TextIO, cost: Optional[float], timeout: float) -> int:
    cache = PriceCache(db)
    queue = SyncQueue(db)
    buffer = KeyboardWedgeBuffer(timeout=timeout, pattern=ISBN_BARCODE)
    count = 0
    print("Ready. Scan barcodes (Ctrl-D to finish).")
    for barcode in iter_barcodes(stream, buffer):
        _queue_scan(cache, queue, barcode, cost)
        count += 1
    print(f"\nQueued {count} scan(s) for sync.")
    return 0


def run_file_scan(db: DatabaseManager, path: Path, cost: Optional[float]) -> int:
    """Queue a CSV of ISBNs, e.g. an export from a phone scanning app. Unreadable rows are skipped."""
    try:
        rows, isbn_field = read_isbn_csv(path)
    except (OSError, ValueError) as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return 2
    cache = PriceCache(db)
    queue = SyncQueue(db)
    count, skipped = 0, 0
    for line, row in enumerate(rows, start=2):
        isbn = normalise_isbn(row.get(isbn_field))
        if isbn is None:
            print(f"Line {line}: skipped {row.get(isbn_field)!r}", file=sys.stderr)
            skipped += 1
            continue
        _queue_scan(cache, queue, isbn, cost)
        count += 1
    print(f"\nQueued {count} scan(s) for sync ({skipped} skipped).")
    return 0 if count else 1


def run_sync(db: DatabaseManager, remote: Optional[str], token: Optional[str]) -> int:
    if not remote:
        print("No remote configured (set SYNC_REMOTE_URL or pass --remote).", file=sys.stderr)
        return 2
    queue = SyncQueue(db, build_target(remote, token))
    result = queue.process()
    print(f"Processed {result.processed}: {result.synced} synced, {result.failed} failed "
          f"({result.permanently_failed} given up)")
    for error in result.errors:
        print(f"  - {error}")
    return 0 if result.failed == 0 else 1


def run_queue_status(db: DatabaseManager) -> int:
    status = SyncQueue(db).status()
    print(f"Pending: {status['pending']}")
    print(f"Failed:  {status['failed']}")
    print(f"Last sync: {status['last_sync'] or 'never'}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.database.parent.mkdir(parents=True, exist_ok=True)
    db = DatabaseManager(args.database)
    try:
        if args.command == "scan":
            if args.file is not None:
                return run_file_scan(db, args.file, args.cost)
            return run_scan(db, sys.stdin, args.cost, args.timeout)
        if args.command == "sync":
            return run_sync(db, args.remote, args.token)
        return run_queue_status(db)
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())

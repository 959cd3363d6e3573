"""CSV and JSON export of scanned books."""
from __future__ import annotations

import csv
import io
import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .models import Book
from .utils import parse_timestamp

CSV_HEADERS = [
    "ISBN",
    "Title",
    "Author",
    "Amazon Price (£)",
    "eBay Price (£)",
    "Your Cost (£)",
    "Estimated Profit (£)",
    "Status",
    "Scanned Date",
]


def _money(value: Optional[float]) -> str:
    return f"{value:.2f}" if value is not None else "-"


def _date(value: Optional[str]) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime("%Y-%m-%d") if parsed else ""


def filter_books(
    books: Iterable[Book],
    profitable_only: bool = False,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> List[Book]:
    selected = []
    for book in books:
        if profitable_only and not (book.profit is not None and book.profit > 0):
            continue
        scanned = parse_timestamp(book.scanned_at)
        if date_from and (scanned is None or scanned < date_from):
            continue
        if date_to and (scanned is None or scanned > date_to):
            continue
        selected.append(book)
    return selected


def books_to_csv(books: Iterable[Book], include_headers: bool = True) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    if include_headers:
        writer.writerow(CSV_HEADERS)
    for book in books:
        writer.writerow([
            book.isbn,
            book.title,
            book.author or "Unknown",
            _money(book.amazon_price),
            _money(book.ebay_price),
            _money(book.your_cost),
            _money(book.profit),
            book.status,
            _date(book.scanned_at),
        ])
    return buffer.getvalue().rstrip("\n")


def book_export_record(book: Book) -> Dict[str, Any]:
    return {
        "isbn": book.isbn,
        "title": book.title,
        "author": book.author or "Unknown",
        "amazonPrice": book.amazon_price,
        "ebayPrice": book.ebay_price,
        "yourCost": book.your_cost,
        "estimatedProfit": book.profit,
        "status": book.status,
        "scannedDate": _date(book.scanned_at),
    }


def books_to_json(books: Iterable[Book]) -> str:
    return json.dumps([book_export_record(book) for book in books], indent=2, ensure_ascii=False)


def export_filename(fmt: str, today: Optional[datetime] = None) -> str:
    today = today or datetime.now()
    return f"isbnscout-books-{today.strftime('%Y-%m-%d')}.{fmt}"

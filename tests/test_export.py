"""Tests for CSV and JSON export of scanned books."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from scout_shared.export import (
    CSV_HEADERS,
    books_to_csv,
    books_to_json,
    export_filename,
    filter_books,
)
from scout_shared.models import Book


@pytest.fixture
def books():
    return [
        Book(id=1, user_id=1, isbn="9780143127550", title="The Sympathizer", author="Viet Thanh Nguyen",
             ebay_price=18.0, your_cost=2.0, profit=10.3, status="profitable",
             scanned_at="2024-05-10T09:00:00+00:00"),
        Book(id=2, user_id=1, isbn="9780000000002", title="Mystery, Part 2", profit=-1.5,
             status="loss", scanned_at="2024-06-01 12:30:00"),
        Book(id=3, user_id=1, isbn="9780000000019", title="Unpriced"),
    ]


@pytest.mark.unit
class TestExport:
    def test_csv_layout(self, books):
        lines = books_to_csv(books).split("\n")

        assert lines[0] == ",".join(CSV_HEADERS)
        assert lines[1] == "9780143127550,The Sympathizer,Viet Thanh Nguyen,-,18.00,2.00,10.30,profitable,2024-05-10"
        assert lines[2] == '9780000000002,"Mystery, Part 2",Unknown,-,-,-,-1.50,loss,2024-06-01'
        assert lines[3].endswith(",pending,")

    def test_csv_without_headers(self, books):
        assert books_to_csv(books[:1], include_headers=False).startswith("9780143127550")

    def test_json_records(self, books):
        records = json.loads(books_to_json(books))

        assert records[0]["estimatedProfit"] == 10.3
        assert records[0]["scannedDate"] == "2024-05-10"
        assert records[1]["author"] == "Unknown"
        assert records[2]["ebayPrice"] is None

    def test_filter_profitable_only(self, books):
        assert [b.id for b in filter_books(books, profitable_only=True)] == [1]

    def test_filter_by_date(self, books):
        selected = filter_books(books, date_from=datetime(2024, 5, 20, tzinfo=timezone.utc))
        assert [b.id for b in selected] == [2]

    def test_filename(self):
        assert export_filename("csv", datetime(2024, 5, 15)) == "isbnscout-books-2024-05-15.csv"

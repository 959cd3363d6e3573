"""Tests for scout_shared.utils ISBN helpers."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from scout_shared.utils import (
    clean_isbn,
    compute_isbn10_check_digit,
    compute_isbn13_check_digit,
    is_valid_isbn,
    isbn10_to_isbn13,
    isbn13_to_isbn10,
    isoformat,
    normalise_isbn,
    parse_timestamp,
    read_isbn_csv,
)


@pytest.mark.unit
class TestIsbnHelpers:
    def test_clean_isbn_strips_hyphens_and_spaces(self):
        assert clean_isbn("978-0-14-312755-0") == "9780143127550"
        assert clean_isbn(" 0 14 312755 1 ") == "0143127551"
        assert clean_isbn(None) == ""

    def test_check_digits(self):
        assert compute_isbn13_check_digit("978014312755") == "0"
        assert compute_isbn10_check_digit("014312755") == "1"
        assert compute_isbn10_check_digit("080442957") == "X"

    def test_is_valid_isbn(self, sample_isbn, sample_isbn_10):
        assert is_valid_isbn(sample_isbn)
        assert is_valid_isbn(sample_isbn_10)
        assert is_valid_isbn("080442957X")
        assert not is_valid_isbn("9780143127551")
        assert not is_valid_isbn("12345")
        assert not is_valid_isbn("01431X7551")
        assert not is_valid_isbn("97801431275AB")

    def test_conversions(self, sample_isbn, sample_isbn_10):
        assert isbn10_to_isbn13(sample_isbn_10) == sample_isbn
        assert isbn13_to_isbn10(sample_isbn) == sample_isbn_10
        assert isbn13_to_isbn10("9791234567896") is None

    def test_normalise_isbn_repairs_check_digit(self, sample_isbn):
        assert normalise_isbn("9780143127559") == sample_isbn
        assert normalise_isbn("ISBN 0-14-312755-1") == sample_isbn
        assert normalise_isbn("1234567890123") is None
        assert normalise_isbn("") is None


@pytest.mark.unit
class TestTimestamps:
    def test_isoformat_assumes_utc_for_naive_values(self):
        assert isoformat(datetime(2024, 5, 1, 12, 0)) == "2024-05-01T12:00:00.000000+00:00"
        assert isoformat(None) is None

    def test_parse_timestamp_accepts_sqlite_and_z_suffix(self):
        expected = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_timestamp("2024-05-01 12:00:00") == expected
        assert parse_timestamp("2024-05-01T12:00:00Z") == expected
        assert parse_timestamp("") is None

    def test_parse_timestamp_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_timestamp("next tuesday")


@pytest.mark.unit
def test_read_isbn_csv_detects_isbn_column(tmp_path):
    path = tmp_path / "scans.csv"
    path.write_text("Title,ISBN13\nThe Sympathizer,9780143127550\n", encoding="utf-8")

    rows, field = read_isbn_csv(path)

    assert field == "ISBN13"
    assert rows[0][field] == "9780143127550"

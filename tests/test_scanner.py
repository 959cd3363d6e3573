"""Tests for the keyboard-wedge barcode buffer."""
from __future__ import annotations

import io

import pytest

from isbnscout.scanner import ISBN_BARCODE, KeyboardWedgeBuffer, iter_barcodes


def type_rapidly(buffer: KeyboardWedgeBuffer, text: str, start: float = 0.0, interval: float = 0.01):
    results = []
    at = start
    for key in text:
        barcode = buffer.feed(key, at)
        if barcode:
            results.append(barcode)
        at += interval
    return results, at


@pytest.mark.unit
class TestKeyboardWedgeBuffer:
    def test_enter_completes_barcode(self, sample_isbn):
        seen = []
        buffer = KeyboardWedgeBuffer(on_scan=seen.append)

        results, _ = type_rapidly(buffer, sample_isbn + "\n")

        assert results == [sample_isbn]
        assert seen == [sample_isbn]
        assert buffer.last_scan == sample_isbn
        assert buffer.pending == ""

    def test_enter_key_name_is_accepted(self, sample_isbn_10):
        buffer = KeyboardWedgeBuffer()
        type_rapidly(buffer, sample_isbn_10)
        assert buffer.feed("Enter", 1.0) == sample_isbn_10

    def test_timeout_flushes_without_enter(self, sample_isbn):
        buffer = KeyboardWedgeBuffer()
        _, last = type_rapidly(buffer, sample_isbn)

        assert buffer.poll(last) is None
        assert buffer.poll(last + 0.2) == sample_isbn

    def test_next_scan_after_timeout_starts_fresh(self, sample_isbn, sample_isbn_10):
        buffer = KeyboardWedgeBuffer()
        _, last = type_rapidly(buffer, sample_isbn)

        results, _ = type_rapidly(buffer, sample_isbn_10 + "\n", start=last + 1.0)

        assert results == [sample_isbn, sample_isbn_10]

    def test_slow_typing_is_ignored(self):
        buffer = KeyboardWedgeBuffer()
        buffer.feed("9", 0.0)
        buffer.feed("7", 0.08)
        assert buffer.pending == "9"

    def test_length_bounds(self):
        buffer = KeyboardWedgeBuffer()
        short, _ = type_rapidly(buffer, "12345\n")
        long_, _ = type_rapidly(buffer, "97801431275501\n", start=5.0)
        assert short == [] and long_ == []

    def test_pattern_rejects_non_isbn(self):
        buffer = KeyboardWedgeBuffer(pattern=ISBN_BARCODE)
        results, _ = type_rapidly(buffer, "ABCDEFGHIJ\n")
        assert results == []

    def test_non_alphanumeric_key_resets(self, sample_isbn):
        buffer = KeyboardWedgeBuffer()
        type_rapidly(buffer, sample_isbn[:6])
        buffer.feed("Shift", 0.065)
        assert buffer.pending == ""


@pytest.mark.unit
def test_iter_barcodes_reads_lines(sample_isbn, sample_isbn_10):
    stream = io.StringIO(f"{sample_isbn}\nnot-a-barcode\n{sample_isbn_10}\n")
    assert list(iter_barcodes(stream)) == [sample_isbn, sample_isbn_10]

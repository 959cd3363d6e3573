"""Tests for the isbnscout command line."""
from __future__ import annotations

import io
from pathlib import Path

import pytest

from isbnscout.__main__ import main, run_file_scan, run_queue_status, run_scan, run_sync
from scout_shared.database import DatabaseManager
from scout_shared.price_cache import PriceCache


@pytest.mark.database
class TestCli:
    def test_scan_queues_valid_barcodes(self, db_manager: DatabaseManager, sample_isbn, capsys):
        stream = io.StringIO(f"{sample_isbn}\n12345\n")

        assert run_scan(db_manager, stream, cost=None, timeout=0.1) == 0

        out = capsys.readouterr().out
        assert sample_isbn in out
        assert "UNKNOWN" in out
        assert "Queued 1 scan(s) for sync." in out
        items = db_manager.pending_sync_items()
        assert len(items) == 1
        assert items[0].entity == "book"
        assert items[0].data["title"] == f"Book with ISBN {sample_isbn}"

    def test_scan_adjusts_profit_for_cost(self, db_manager: DatabaseManager, sample_isbn, capsys):
        PriceCache(db_manager).cache_price(sample_isbn, title="The Sympathizer", ebay_price=10.0)

        run_scan(db_manager, io.StringIO(sample_isbn + "\n"), cost=3.0, timeout=0.1)

        data = db_manager.pending_sync_items()[0].data
        assert data["profit"] == 7.0
        assert data["your_cost"] == 3.0
        assert "£10.00" in capsys.readouterr().out

    def test_sync_without_remote(self, db_manager: DatabaseManager, capsys):
        assert run_sync(db_manager, None, None) == 2
        assert "No remote configured" in capsys.readouterr().err

    def test_queue_status(self, db_manager: DatabaseManager, capsys):
        db_manager.enqueue_sync("book", "create", {"isbn": "9780143127550"})

        assert run_queue_status(db_manager) == 0

        out = capsys.readouterr().out
        assert "Pending: 1" in out
        assert "Last sync: never" in out

    def test_main_creates_database(self, tmp_path: Path, capsys):
        db_path = tmp_path / "nested" / "scout.db"

        assert main(["--database", str(db_path), "queue-status"]) == 0
        assert db_path.exists()

    def test_file_scan_normalises_and_skips(self, db_manager: DatabaseManager, tmp_path: Path, sample_isbn, capsys):
        path = tmp_path / "export.csv"
        path.write_text("Title,ISBN\nThe Sympathizer,0-14-312755-1\nJunk,12345\n", encoding="utf-8")

        assert run_file_scan(db_manager, path, cost=1.0) == 0

        captured = capsys.readouterr()
        assert "Queued 1 scan(s) for sync (1 skipped)." in captured.out
        assert "Line 3: skipped '12345'" in captured.err
        items = db_manager.pending_sync_items()
        assert [item.data["isbn"] for item in items] == [sample_isbn]
        assert items[0].data["your_cost"] == 1.0

    def test_file_scan_missing_file(self, db_manager: DatabaseManager, tmp_path: Path, capsys):
        assert run_file_scan(db_manager, tmp_path / "missing.csv", cost=None) == 2
        assert "Cannot read" in capsys.readouterr().err

    def test_main_scan_file(self, tmp_path: Path, sample_isbn, capsys):
        path = tmp_path / "export.csv"
        path.write_text(f"isbn\n{sample_isbn}\n", encoding="utf-8")

        assert main(["--database", str(tmp_path / "scout.db"), "scan", "--file", str(path)]) == 0
        assert "Queued 1 scan(s)" in capsys.readouterr().out

"""Shared pytest fixtures for all tests."""
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, Mock

import pytest

from isbnscout.service import ScoutService
from isbnscout.sync_queue import NullSyncTarget
from scout_shared.database import DatabaseManager
from scout_shared.models import BookMetadata, EbayPriceData, User


@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        yield db_path


@pytest.fixture
def db_manager(temp_db_path: Path) -> Generator[DatabaseManager, None, None]:
    """Create a DatabaseManager with temporary database."""
    db = DatabaseManager(temp_db_path)
    yield db
    db.close()


@pytest.fixture
def sample_isbn() -> str:
    """Return a sample ISBN for testing."""
    return "9780143127550"  # "The Sympathizer" by Viet Thanh Nguyen


@pytest.fixture
def sample_isbn_10() -> str:
    """Return a sample ISBN-10 for testing."""
    return "0143127551"


@pytest.fixture
def sample_metadata(sample_isbn: str) -> BookMetadata:
    return BookMetadata(
        isbn=sample_isbn,
        title="The Sympathizer",
        authors=("Viet Thanh Nguyen",),
        publisher="Grove Press",
        thumbnail="https://example.com/thumb.jpg",
    )


@pytest.fixture
def sample_ebay_prices(sample_isbn: str) -> EbayPriceData:
    return EbayPriceData(
        isbn=sample_isbn,
        current_price=18.0,
        average_price=20.0,
        min_price=18.0,
        max_price=24.0,
        active_listings=3,
    )


@pytest.fixture
def metadata_client(sample_metadata: BookMetadata) -> Mock:
    client = Mock()
    client.lookup_isbn.return_value = sample_metadata
    client.search_title_author.return_value = None
    return client


@pytest.fixture
def ebay_client(sample_ebay_prices: EbayPriceData) -> Mock:
    client = Mock()
    client.is_configured.return_value = True
    client.get_price_by_isbn.return_value = sample_ebay_prices
    client.search_by_title.return_value = None
    return client


@pytest.fixture
def amazon_client() -> Mock:
    client = Mock()
    client.is_configured.return_value = False
    return client


@pytest.fixture
def mailer() -> MagicMock:
    return MagicMock()


@pytest.fixture
def billing() -> MagicMock:
    return MagicMock()


@pytest.fixture
def service(
    db_manager: DatabaseManager,
    metadata_client: Mock,
    ebay_client: Mock,
    amazon_client: Mock,
    mailer: MagicMock,
    billing: MagicMock,
) -> Generator[ScoutService, None, None]:
    """ScoutService with every third-party client mocked out."""
    svc = ScoutService(
        db=db_manager,
        metadata_client=metadata_client,
        ebay_client=ebay_client,
        amazon_client=amazon_client,
        mailer=mailer,
        billing=billing,
        sync_target=NullSyncTarget(),
    )
    yield svc
    svc.close()


@pytest.fixture
def user(service: ScoutService) -> User:
    """A freshly signed-up user on an active trial."""
    return service.auth.signup("reseller", "reseller@example.com", "correct-horse").user


@pytest.fixture
def other_user(service: ScoutService) -> User:
    return service.auth.signup("rival", "rival@example.com", "battery-staple").user


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch, tmp_path):
    """Keep tests away from real credentials and the home directory."""
    monkeypatch.setenv("TESTING", "1")
    for name in (
        "EBAY_APP_ID",
        "EBAY_CERT_ID",
        "AMAZON_ACCESS_KEY",
        "AMAZON_SECRET_KEY",
        "AMAZON_PARTNER_TAG",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "RESEND_API_KEY",
        "SYNC_REMOTE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


# Markers for categorizing tests
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (may use database, file system)"
    )
    config.addinivalue_line(
        "markers", "network: Tests that require network access"
    )
    config.addinivalue_line(
        "markers", "database: Tests that use database"
    )

"""Tests for Amazon PA-API pricing."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from scout_shared.amazon_pricing import AmazonPricingClient


def _item(amount=7.99, basis=9.99):
    listing = SimpleNamespace(
        price=SimpleNamespace(amount=amount, currency="GBP"),
        saving_basis=SimpleNamespace(amount=basis) if basis is not None else None,
    )
    return SimpleNamespace(
        asin="0143127551",
        offers=SimpleNamespace(listings=[listing]),
        item_info=SimpleNamespace(title=SimpleNamespace(display_value="The Sympathizer")),
        detail_page_url="https://www.amazon.co.uk/dp/0143127551",
    )


@pytest.mark.unit
class TestAmazonPricingClient:
    def test_unconfigured_client_returns_none(self):
        client = AmazonPricingClient()

        assert not client.is_configured()
        assert client.get_price_by_isbn("9780143127550") is None

    def test_isbn13_is_looked_up_as_asin(self, sample_isbn):
        api = Mock()
        api.get_items.return_value = [_item()]
        client = AmazonPricingClient("key", "secret", "tag-21", api=api)

        data = client.get_price_by_isbn(sample_isbn)

        api.get_items.assert_called_once_with(["0143127551"])
        assert data.isbn == sample_isbn
        assert data.price == 7.99
        assert data.list_price == 9.99
        assert data.title == "The Sympathizer"

    def test_979_isbn_has_no_asin(self):
        api = Mock()
        client = AmazonPricingClient("key", "secret", "tag-21", api=api)

        assert client.get_price_by_isbn("9791032305690") is None
        api.get_items.assert_not_called()

    def test_item_without_offers(self, sample_isbn):
        api = Mock()
        api.get_items.return_value = [SimpleNamespace(asin="0143127551", offers=None)]
        client = AmazonPricingClient("key", "secret", "tag-21", api=api)

        data = client.get_price_by_isbn(sample_isbn)

        assert data.price is None
        assert data.currency == "GBP"

    def test_no_items(self, sample_isbn):
        api = Mock()
        api.get_items.return_value = []
        assert AmazonPricingClient("key", "secret", "tag-21", api=api).get_price_by_isbn(sample_isbn) is None

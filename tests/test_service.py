"""Tests for ScoutService with every external client mocked."""
from __future__ import annotations

import json
from unittest.mock import Mock

import pytest

from isbnscout.billing import BillingError
from isbnscout.ebay_sell import EbaySellError
from isbnscout.errors import (
    AuthError,
    NotFound,
    PermissionDenied,
    ScanLimitExceeded,
    SubscriptionRequired,
    UpstreamError,
    ValidationFailed,
)
from isbnscout.mailer import MailerError
from isbnscout.service import ScoutService, demo_price_estimate, mock_ebay_prices
from scout_shared.utils import compute_isbn13_check_digit


@pytest.fixture
def book(service: ScoutService, user, sample_isbn):
    return service.record_scan(user, {"isbn": sample_isbn})


@pytest.mark.database
class TestPricing:
    def test_lookup_pricing_queries_marketplaces(self, service: ScoutService, sample_isbn, ebay_client):
        result = service.lookup_pricing(sample_isbn)

        assert result["title"] == "The Sympathizer"
        assert result["author"] == "Viet Thanh Nguyen"
        assert result["ebay_price"] == 20.0
        assert result["lowest_price"] == 18.0
        assert result["profit"] == 5.15
        assert result["verdict"] == "BUY"
        assert result["source"] == "api"
        ebay_client.get_price_by_isbn.assert_called_once_with(sample_isbn)

    def test_lookup_pricing_uses_fresh_cache(self, service: ScoutService, sample_isbn, ebay_client):
        service.lookup_pricing(sample_isbn)
        result = service.lookup_pricing(sample_isbn)

        assert result["source"] == "cache"
        assert result["lowest_price"] == 20.0
        assert result["profit"] == 9.0
        assert ebay_client.get_price_by_isbn.call_count == 1

    def test_lookup_pricing_falls_back_to_demo_estimate(self, service: ScoutService, sample_isbn, ebay_client):
        ebay_client.get_price_by_isbn.return_value = None

        result = service.lookup_pricing(sample_isbn)

        assert result["source"] == "demo"
        assert result["ebay_price"] == 12.99
        assert result["amazon_price"] == 14.29
        assert result["verdict"] == "MARGINAL"
        assert service.price_cache.get_cached_price(sample_isbn).confidence == "medium"

    def test_lookup_pricing_survives_client_errors(self, service: ScoutService, sample_isbn, metadata_client, ebay_client):
        metadata_client.lookup_isbn.side_effect = RuntimeError("timeout")
        ebay_client.get_price_by_isbn.side_effect = RuntimeError("timeout")

        result = service.lookup_pricing(sample_isbn)

        assert result["title"] is None
        assert result["source"] == "demo"

    def test_lookup_requires_isbn(self, service: ScoutService):
        with pytest.raises(ValidationFailed):
            service.lookup_pricing("  ")

    def test_demo_estimate_is_deterministic(self, sample_isbn):
        assert demo_price_estimate(sample_isbn) == 12.99
        assert demo_price_estimate(sample_isbn, "Penguin Books") == 15.99
        assert demo_price_estimate(sample_isbn) == demo_price_estimate(sample_isbn)

    def test_demo_lookup(self, service: ScoutService, sample_isbn):
        first = service.demo_lookup(sample_isbn)
        second = service.demo_lookup(sample_isbn)

        assert first["ebay_price"] == 20.0
        assert not first["cached"]
        assert second["cached"]
        assert second["title"] == "The Sympathizer"

    def test_demo_lookup_fallback(self, service: ScoutService, sample_isbn, metadata_client):
        metadata_client.lookup_isbn.side_effect = RuntimeError("offline")

        result = service.demo_lookup(sample_isbn)

        assert result["fallback"]
        assert result["title"] == "Sample Textbook"

    def test_demo_lookup_counts_visitor_trial(self, service: ScoutService, sample_isbn):
        service.trials.scan_limit = 2

        result = service.demo_lookup(sample_isbn, visitor="visitor-1")

        assert result["trial"]["scans_used"] == 1
        assert result["trial"]["scans_remaining"] == 1
        service.demo_lookup(sample_isbn, visitor="visitor-1")
        with pytest.raises(ScanLimitExceeded) as excinfo:
            service.demo_lookup(sample_isbn, visitor="visitor-1")
        assert excinfo.value.code == "trial_limit_reached"
        assert excinfo.value.extra == {"scans_used": 2, "scans_limit": 2}

    def test_demo_lookup_paid_user_not_counted(self, service: ScoutService, user, sample_isbn):
        service.trials.scan_limit = 1
        service.trials.record_trial_scan("visitor-1")
        paid = service.db.update_user(user.id, subscription_tier="pro")

        result = service.demo_lookup(sample_isbn, user=paid, visitor="visitor-1")

        assert "trial" not in result
        assert service.trials.get_trial_status("visitor-1").scans_used == 1

    def test_book_prices_from_ebay(self, service: ScoutService, sample_isbn):
        result = service.book_prices(sample_isbn)

        assert result["ebay_price"] == 18.0
        assert result["currency"] == "GBP"

    def test_book_prices_mock_for_known_book(self, service: ScoutService, user, sample_isbn, ebay_client):
        ebay_client.is_configured.return_value = False
        book = service.record_scan(user, {"isbn": sample_isbn})

        result = service.book_prices(sample_isbn)

        expected = mock_ebay_prices(book)
        assert result["ebay_price"] == expected.current_price
        assert result["ebay_data"].active_listings == expected.active_listings

    def test_book_prices_unknown_book(self, service: ScoutService, ebay_client):
        ebay_client.is_configured.return_value = False
        assert service.book_prices("9780000000002")["ebay_price"] is None

    def test_offline_lookup_requires_isbn(self, service: ScoutService):
        with pytest.raises(ValidationFailed):
            service.offline_lookup("")

    def test_api_usage(self, service: ScoutService):
        usage = service.api_usage()
        assert usage["limits"]["ebay"] == {"daily": 5000, "remaining": 5000}


@pytest.mark.database
class TestScans:
    def test_record_scan_fills_metadata_and_profit(self, service: ScoutService, book, sample_isbn):
        assert book.isbn == sample_isbn
        assert book.title == "The Sympathizer"
        assert book.publisher == "Grove Press"
        assert book.ebay_price == 20.0
        assert book.profit == 6.85
        assert book.status == "profitable"
        assert service.sync_queue.status()["pending"] == 1

    def test_record_scan_with_cost(self, service: ScoutService, user, sample_isbn):
        book = service.record_scan(user, {"isbn": "978-0-14-312755-0", "your_cost": 1.5})

        assert book.isbn == sample_isbn
        assert book.profit == 13.35

    def test_record_scan_keeps_given_title(self, service: ScoutService, user, metadata_client):
        book = service.record_scan(user, {"isbn": "9780000000002", "title": "Known", "ebay_price": 4.0})

        metadata_client.lookup_isbn.assert_not_called()
        assert book.title == "Known"
        assert book.author == "Unknown Author"
        assert book.status == "loss"

    def test_rescan_updates_existing_row(self, service: ScoutService, user, book):
        again = service.record_scan(user, {"isbn": book.isbn, "your_cost": 2.0})

        assert again.id == book.id
        assert service.db.count_books(user.id) == 1

    def test_scan_limit(self, service: ScoutService, user):
        for n in range(10):
            prefix = f"9780000000{n:02d}"
            service.record_scan(user, {"isbn": prefix + compute_isbn13_check_digit(prefix), "title": "Filler"})

        with pytest.raises(ScanLimitExceeded) as excinfo:
            service.record_scan(user, {"isbn": "9780000000999", "title": "One too many"})

        assert excinfo.value.extra == {"scans_used": 10, "scans_limit": 10}

    def test_record_scan_rejects_invalid_isbn(self, service: ScoutService, user):
        with pytest.raises(ValidationFailed, match="Invalid ISBN"):
            service.record_scan(user, {"isbn": "9780143127551"})
        assert service.db.count_books(user.id) == 0

    def test_delete_book(self, service: ScoutService, user, other_user, book):
        with pytest.raises(PermissionDenied):
            service.delete_book(other_user, book.isbn)

        service.delete_book(user, book.isbn)

        assert service.db.get_book(book.id) is None
        last = service.db.pending_sync_items()[-1]
        assert (last.entity, last.operation, last.data) == ("book", "delete", {"isbn": book.isbn})
        with pytest.raises(NotFound):
            service.delete_book(user, book.isbn)

    def test_ai_placeholder_isbn_is_resolved_by_title(self, service: ScoutService, user, metadata_client, sample_metadata):
        metadata_client.search_title_author.return_value = sample_metadata

        book = service.record_scan(user, {"isbn": "AI-1234", "title": "Sympathizer", "author": "Nguyen"})

        assert book.isbn == sample_metadata.isbn
        assert book.title == "The Sympathizer"

    def test_update_book_recomputes_profit(self, service: ScoutService, user, book):
        updated = service.update_book(user, book.isbn, {"your_cost": 1.5})

        assert updated.profit == 13.35
        assert updated.status == "profitable"

    def test_update_book_ownership(self, service: ScoutService, other_user, book):
        with pytest.raises(PermissionDenied):
            service.update_book(other_user, book.isbn, {"your_cost": 1.0})

    def test_update_missing_book(self, service: ScoutService, user):
        with pytest.raises(NotFound):
            service.update_book(user, "9780000000002", {"your_cost": 1.0})

    def test_update_unknown_field(self, service: ScoutService, user, book):
        with pytest.raises(ValidationFailed):
            service.update_book(user, book.isbn, {"user_id": 99})

    def test_scan_history(self, service: ScoutService, user, book):
        history = service.scan_history(user, limit=10)
        assert history["total"] == 1
        assert history["scans"][0].id == book.id

    def test_sync_scans_imports_each_row(self, service: ScoutService, user, sample_isbn):
        result = service.sync_scans(user, [
            {"isbn": "978-0-14-312755-0", "profit": 3.0, "scanned_at": "2024-05-10T09:00:00+00:00"},
            {"title": "no isbn"},
        ])

        assert result["synced"] == 1
        assert result["failed"] == 1
        book = service.db.get_book_by_isbn(user.id, sample_isbn)
        assert book.status == "profitable"
        assert book.scanned_at == "2024-05-10T09:00:00+00:00"

    def test_sync_scans_keeps_existing_book_details(self, service: ScoutService, user, book):
        result = service.sync_scans(user, [{"isbn": book.isbn}])

        resynced = service.db.get_book_by_isbn(user.id, book.isbn)
        assert result["synced"] == 1
        assert resynced.id == book.id
        assert resynced.title == "The Sympathizer"
        assert resynced.profit == book.profit == 6.85
        assert resynced.status == "profitable"

    def test_sync_scans_new_book_gets_placeholder_title(self, service: ScoutService, user):
        service.sync_scans(user, [{"isbn": "9780000000002"}])

        book = service.db.get_book_by_isbn(user.id, "9780000000002")
        assert book.title == "Book with ISBN 9780000000002"
        assert book.status == "pending"

    def test_export_csv_and_json(self, service: ScoutService, user, book):
        csv_text = service.export_books(user, "csv")
        records = json.loads(service.export_books(user, "json", profitable_only=True))

        assert len(csv_text.split("\n")) == 2
        assert records[0]["isbn"] == book.isbn

    def test_export_bare_date_includes_whole_day(self, service: ScoutService, user):
        service.sync_scans(user, [{"isbn": "9780000000002", "scanned_at": "2024-05-10T18:00:00+00:00"}])

        csv_text = service.export_books(user, "csv", date_from="2024-05-10", date_to="2024-05-10")

        assert "9780000000002" in csv_text

    def test_export_rejects_unknown_format(self, service: ScoutService, user):
        with pytest.raises(ValidationFailed):
            service.export_books(user, "xml")


@pytest.mark.database
class TestInventoryAndListings:
    def _item(self, service, user, book, **extra):
        payload = {"book_id": book.id, "purchase_date": "2024-05-01", "purchase_cost": 2.0, "condition": "Good"}
        payload.update(extra)
        return service.create_inventory_item(user, payload)

    def test_inventory_lifecycle(self, service: ScoutService, user, book):
        item = self._item(service, user, book, location="Shelf A")

        assert item.status == "in_stock"
        assert [i.id for i in service.inventory_for_book(user, book.id)] == [item.id]

        sold = service.record_sale(user, item.id, 10.0, "ebay", "2024-05-20")
        assert sold.status == "sold"
        assert sold.actual_profit == 8.0
        assert service.list_inventory(user, "sold")[0].id == item.id

        service.delete_inventory_item(user, item.id)
        with pytest.raises(NotFound):
            service.get_inventory_item(user, item.id)

    def test_inventory_validation(self, service: ScoutService, user, book):
        with pytest.raises(ValidationFailed):
            service.create_inventory_item(user, {"book_id": book.id})
        with pytest.raises(ValidationFailed):
            self._item(service, user, book, status="lost")

    def test_inventory_ownership(self, service: ScoutService, user, other_user, book):
        item = self._item(service, user, book)
        with pytest.raises(PermissionDenied):
            service.get_inventory_item(other_user, item.id)
        with pytest.raises(PermissionDenied):
            self._item(service, other_user, book)

    def test_negative_sale_price(self, service: ScoutService, user, book):
        item = self._item(service, user, book)
        with pytest.raises(ValidationFailed):
            service.record_sale(user, item.id, -1.0)

    def test_ebay_listing_requires_credentials(self, service: ScoutService, user, book):
        with pytest.raises(ValidationFailed):
            service.create_listing(user, {"book_id": book.id, "platform": "ebay", "price": 9.99, "condition": "Good"})

    def test_ebay_listing_published(self, service: ScoutService, user, book):
        item = self._item(service, user, book)
        service.save_credentials(user, "ebay", {"user_token": "v^1.1"})
        sell_client = Mock()
        sell_client.list_book.return_value = "1100"
        factory = Mock(return_value=sell_client)
        service.sell_client_factory = factory

        listing = service.create_listing(user, {
            "book_id": book.id, "platform": "ebay", "price": 9.99, "condition": "Very Good",
            "inventory_item_id": item.id,
        })

        assert listing.status == "active"
        assert listing.platform_listing_id == "1100"
        factory.assert_called_once_with({"user_token": "v^1.1"})
        linked = service.get_inventory_item(user, item.id)
        assert linked.status == "listed"
        assert linked.listing_id == listing.id

    def test_ebay_listing_failure_is_recorded(self, service: ScoutService, user, book):
        service.save_credentials(user, "ebay", {"user_token": "v^1.1"})
        sell_client = Mock()
        sell_client.list_book.side_effect = EbaySellError("Invalid token")
        service.sell_client_factory = Mock(return_value=sell_client)

        listing = service.create_listing(user, {"book_id": book.id, "platform": "ebay", "price": 9.99, "condition": "Good"})

        assert listing.status == "failed"
        assert listing.error_message == "Invalid token"

    def test_amazon_listing_is_draft(self, service: ScoutService, user, book):
        listing = service.create_listing(user, {"book_id": book.id, "platform": "amazon", "price": 9.99, "condition": "Good"})

        assert listing.status == "draft"
        assert [l.id for l in service.listings_for_book(user, book.id)] == [listing.id]

    @pytest.mark.parametrize(
        "payload",
        [
            {"platform": "etsy", "price": 5.0, "condition": "Good"},
            {"platform": "amazon", "price": 0, "condition": "Good"},
            {"platform": "amazon", "price": 5.0, "condition": ""},
        ],
    )
    def test_listing_validation(self, service: ScoutService, user, book, payload):
        with pytest.raises(ValidationFailed):
            service.create_listing(user, dict(payload, book_id=book.id))

    def test_update_listing(self, service: ScoutService, user, other_user, book):
        listing = service.create_listing(user, {"book_id": book.id, "platform": "amazon", "price": 9.99, "condition": "Good"})

        updated = service.update_listing(user, listing.id, {"price": 11.504, "description": "Clean copy"})
        assert updated.price == 11.5
        assert updated.description == "Clean copy"
        assert service.db.pending_sync_items()[-1].operation == "update"

        ended = service.update_listing(user, listing.id, {"status": "ended"})
        assert ended.status == "ended"
        assert service.get_listing(user, listing.id).status == "ended"
        assert service.db.pending_sync_items()[-1].operation == "updateStatus"

        with pytest.raises(PermissionDenied):
            service.get_listing(other_user, listing.id)
        with pytest.raises(NotFound):
            service.update_listing(user, 999, {"status": "ended"})

    @pytest.mark.parametrize("updates", [{"status": "sold"}, {"price": 0}, {"book_id": 2}])
    def test_update_listing_validation(self, service: ScoutService, user, book, updates):
        listing = service.create_listing(user, {"book_id": book.id, "platform": "amazon", "price": 9.99, "condition": "Good"})
        with pytest.raises(ValidationFailed):
            service.update_listing(user, listing.id, updates)


@pytest.mark.database
class TestRepricing:
    RULE = {"platform": "ebay", "strategy": "match_lowest", "min_price": 5.0, "max_price": 30.0}

    @pytest.fixture
    def pro_user(self, service: ScoutService, user):
        return service.db.update_user(user.id, subscription_tier="pro", subscription_status="active")

    @pytest.fixture
    def sell_client(self, service: ScoutService, pro_user):
        service.save_credentials(pro_user, "ebay", {"user_token": "v^1.1"})
        client = Mock()
        client.list_book.return_value = "1100"
        service.sell_client_factory = Mock(return_value=client)
        return client

    @pytest.fixture
    def ebay_listing(self, service: ScoutService, pro_user, book, sell_client):
        return service.create_listing(pro_user, {"book_id": book.id, "platform": "ebay", "price": 9.99, "condition": "Good"})

    def test_trial_user_cannot_create_rules(self, service: ScoutService, user):
        with pytest.raises(SubscriptionRequired) as excinfo:
            service.create_repricing_rule(user, self.RULE)
        assert excinfo.value.code == "feature_not_available"

    def test_rule_validation(self, service: ScoutService, pro_user):
        with pytest.raises(ValidationFailed) as excinfo:
            service.create_repricing_rule(pro_user, dict(self.RULE, min_price=40.0))
        assert excinfo.value.extra["errors"] == ["Min price must be less than max price"]

    def test_rule_crud(self, service: ScoutService, pro_user, other_user):
        rule = service.create_repricing_rule(pro_user, dict(self.RULE, strategy="beat_by_amount", strategy_value=0.5))

        assert rule.is_active
        assert rule.run_frequency == "hourly"
        assert [r.id for r in service.list_repricing_rules(pro_user)] == [rule.id]
        assert service.update_repricing_rule(pro_user, rule.id, {"max_price": 25.0}).max_price == 25.0
        with pytest.raises(ValidationFailed):
            service.update_repricing_rule(pro_user, rule.id, {"strategy_value": -1})
        with pytest.raises(NotFound):
            service.get_repricing_rule(other_user, rule.id)

        service.delete_repricing_rule(pro_user, rule.id)
        with pytest.raises(NotFound):
            service.get_repricing_rule(pro_user, rule.id)

    def test_reprice_pushes_to_ebay(self, service: ScoutService, pro_user, book, ebay_listing, sell_client):
        rule = service.create_repricing_rule(pro_user, self.RULE)

        result = service.reprice_listing(pro_user, ebay_listing.id)

        assert result.success
        assert (result.old_price, result.new_price, result.competitor_price) == (9.99, 18.0, 18.0)
        assert result.reason == "Matched competitor price of £18.00"
        sell_client.update_price.assert_called_once()
        assert sell_client.update_price.call_args.args[1:] == (18.0, 1)
        assert service.get_listing(pro_user, ebay_listing.id).price == 18.0
        history = service.repricing_history(pro_user, ebay_listing.id)
        assert [(h.rule_id, h.old_price, h.new_price, h.success) for h in history] == [(rule.id, 9.99, 18.0, True)]
        assert service.get_repricing_rule(pro_user, rule.id).last_run is not None

    def test_listing_rule_wins_over_catch_all(self, service: ScoutService, pro_user, ebay_listing, sell_client):
        service.create_repricing_rule(pro_user, self.RULE)
        service.create_repricing_rule(pro_user, dict(self.RULE, listing_id=ebay_listing.id, max_price=12.0))

        result = service.reprice_listing(pro_user, ebay_listing.id)

        assert result.new_price == 12.0

    def test_ebay_failure_keeps_price(self, service: ScoutService, pro_user, ebay_listing, sell_client):
        sell_client.update_price.side_effect = EbaySellError("eBay price update failed: bad offer")
        service.create_repricing_rule(pro_user, self.RULE)

        result = service.reprice_listing(pro_user, ebay_listing.id)

        assert not result.success
        assert result.reason == "API update failed"
        assert result.error_message == "eBay price update failed: bad offer"
        assert service.get_listing(pro_user, ebay_listing.id).price == 9.99
        assert not service.repricing_history(pro_user)[0].success

    def test_unchanged_price(self, service: ScoutService, pro_user, ebay_listing, sell_client):
        service.update_listing(pro_user, ebay_listing.id, {"price": 18.0})
        service.create_repricing_rule(pro_user, self.RULE)

        result = service.reprice_listing(pro_user, ebay_listing.id)

        assert result.success
        assert result.reason == "Price unchanged"
        sell_client.update_price.assert_not_called()

    def test_amazon_listing_without_market_price(self, service: ScoutService, pro_user, book):
        listing = service.create_listing(pro_user, {"book_id": book.id, "platform": "amazon", "price": 9.99, "condition": "Good"})
        service.create_repricing_rule(pro_user, dict(self.RULE, platform="all"))

        result = service.reprice_listing(pro_user, listing.id)

        assert not result.success
        assert result.reason == "No competitor price available"
        assert result.error_message == "Could not fetch market price"

    def test_failed_ebay_listing_is_repriced_locally(self, service: ScoutService, pro_user, book, sell_client):
        sell_client.list_book.side_effect = EbaySellError("Invalid token")
        listing = service.create_listing(pro_user, {"book_id": book.id, "platform": "ebay", "price": 9.99, "condition": "Good"})
        service.create_repricing_rule(pro_user, dict(self.RULE, strategy="beat_by_percent", strategy_value=10))

        result = service.reprice_listing(pro_user, listing.id)

        assert result.new_price == 16.2
        sell_client.update_price.assert_not_called()
        assert service.get_listing(pro_user, listing.id).price == 16.2

    def test_reprice_without_rules(self, service: ScoutService, pro_user, ebay_listing):
        with pytest.raises(ValidationFailed, match="No active repricing rules"):
            service.reprice_listing(pro_user, ebay_listing.id)

    def test_reprice_all_skips_inactive_listings(self, service: ScoutService, pro_user, book, ebay_listing, sell_client):
        draft = service.create_listing(pro_user, {"book_id": book.id, "platform": "amazon", "price": 9.99, "condition": "Good"})
        service.create_repricing_rule(pro_user, dict(self.RULE, platform="all"))

        results = service.reprice_all(pro_user)

        assert [r.listing_id for r in results] == [ebay_listing.id]
        assert service.get_listing(pro_user, draft.id).price == 9.99


@pytest.mark.database
class TestAlertsAndCredentials:
    def test_alert_triggers_on_scan(self, service: ScoutService, user, sample_isbn):
        alert = service.create_alert(user, {"alert_type": "profitable"})

        service.record_scan(user, {"isbn": sample_isbn})

        stored = service.db.get_alert(alert.id)
        assert stored.status == "triggered"
        assert stored.triggered_at is not None

    def test_check_alerts(self, service: ScoutService, user, book):
        alert = service.create_alert(user, {"alert_type": "price_drop", "target_value": 25.0})

        triggered = service.check_alerts(user)

        assert len(triggered) == 1
        assert triggered[0]["alert"].id == alert.id
        assert triggered[0]["alert"].status == "triggered"
        assert triggered[0]["book"].isbn == book.isbn

    def test_alert_validation(self, service: ScoutService, user):
        with pytest.raises(ValidationFailed) as excinfo:
            service.create_alert(user, {"alert_type": "price_drop"})
        assert excinfo.value.extra["errors"] == ["Target value must be greater than 0"]

    def test_alert_update_and_delete(self, service: ScoutService, user, other_user):
        alert = service.create_alert(user, {"alert_type": "target_margin", "target_value": 50, "isbn": "978-0-14-312755-0"})

        assert alert.isbn == "9780143127550"
        assert service.update_alert(user, alert.id, {"status": "paused"}).status == "paused"
        with pytest.raises(ValidationFailed):
            service.update_alert(user, alert.id, {"status": "snoozed"})
        with pytest.raises(PermissionDenied):
            service.delete_alert(other_user, alert.id)

        service.delete_alert(user, alert.id)
        with pytest.raises(NotFound):
            service.update_alert(user, alert.id, {"status": "active"})

    def test_credentials(self, service: ScoutService, user):
        service.save_credentials(user, "ebay", {"user_token": "abc"})

        assert service.credentials_summary(user, "ebay") == {"has_credentials": True, "platform": "ebay", "is_active": True}
        with pytest.raises(NotFound):
            service.credentials_summary(user, "amazon")
        with pytest.raises(ValidationFailed):
            service.save_credentials(user, "etsy", {"key": "x"})
        with pytest.raises(ValidationFailed):
            service.save_credentials(user, "amazon", {})


@pytest.mark.database
class TestAccounts:
    def test_signup_sends_welcome(self, service: ScoutService, mailer):
        session = service.signup("newbie", "newbie@example.com", "correct-horse")

        assert session.token
        mailer.send_welcome.assert_called_once_with("newbie", "newbie@example.com", 14)

    def test_signup_survives_mail_failure(self, service: ScoutService, mailer):
        mailer.send_welcome.side_effect = MailerError("down")
        assert service.signup("newbie", "newbie@example.com", "correct-horse").user.username == "newbie"

    def test_checkout_creates_customer(self, service: ScoutService, user, billing):
        billing.create_customer.return_value = "cus_1"
        billing.create_checkout_session.return_value = {"url": "https://checkout", "session_id": "cs_1"}

        result = service.start_checkout(user, "pro", "https://ok", "https://cancel")

        assert result["session_id"] == "cs_1"
        assert service.db.get_user(user.id).stripe_customer_id == "cus_1"
        billing.create_checkout_session.assert_called_once_with("pro", "cus_1", "https://ok", "https://cancel", user.id)

    @pytest.mark.parametrize("plan_id, error", [("free", ValidationFailed), ("pro", UpstreamError)])
    def test_checkout_errors(self, service: ScoutService, user, billing, plan_id, error):
        billing.create_customer.return_value = "cus_1"
        billing.create_checkout_session.side_effect = BillingError("nope")
        with pytest.raises(error):
            service.start_checkout(user, plan_id, "https://ok", "https://cancel")

    def test_webhook_bad_signature(self, service: ScoutService, billing):
        billing.verify_webhook.side_effect = BillingError("Invalid stripe signature")
        with pytest.raises(ValidationFailed) as excinfo:
            service.handle_billing_webhook(b"{}", "t=1,v1=x")
        assert excinfo.value.code == "invalid_signature"

    def test_webhook_applies_event(self, service: ScoutService, user, billing):
        billing.verify_webhook.return_value = {
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": str(user.id), "customer": "cus_1", "metadata": {"planId": "basic"}}},
        }

        result = service.handle_billing_webhook(b"{}", "sig")

        assert result["handled"]
        assert service.db.get_user(user.id).subscription_tier == "basic"

    def test_verify_checkout_upgrades_user(self, service: ScoutService, user, billing):
        billing.retrieve_checkout_session.return_value = {
            "client_reference_id": str(user.id),
            "payment_status": "paid",
            "customer": "cus_1",
            "subscription": "sub_1",
            "metadata": {"planId": "basic"},
        }

        result = service.verify_checkout(user, "cs_1")

        assert result["plan_id"] == "basic"
        assert result["user"]["subscription_tier"] == "basic"
        stored = service.db.get_user(user.id)
        assert stored.subscription_status == "active"
        assert stored.stripe_subscription_id == "sub_1"
        billing.retrieve_checkout_session.assert_called_once_with("cs_1")

    def test_verify_checkout_defaults_to_pro(self, service: ScoutService, user, billing):
        billing.retrieve_checkout_session.return_value = {"payment_status": "paid"}
        assert service.verify_checkout(user, "cs_1")["plan_id"] == "pro"

    def test_verify_checkout_unpaid(self, service: ScoutService, user, billing):
        billing.retrieve_checkout_session.return_value = {"client_reference_id": str(user.id), "payment_status": "unpaid"}

        with pytest.raises(ValidationFailed) as excinfo:
            service.verify_checkout(user, "cs_1")

        assert excinfo.value.code == "payment_incomplete"
        assert service.db.get_user(user.id).subscription_tier == "trial"

    def test_verify_checkout_for_another_account(self, service: ScoutService, user, other_user, billing):
        billing.retrieve_checkout_session.return_value = {"client_reference_id": str(other_user.id), "payment_status": "paid"}
        with pytest.raises(PermissionDenied):
            service.verify_checkout(user, "cs_1")

    def test_verify_checkout_errors(self, service: ScoutService, user, billing):
        with pytest.raises(ValidationFailed):
            service.verify_checkout(user, "")
        billing.retrieve_checkout_session.side_effect = BillingError("Stripe error: No such checkout session")
        with pytest.raises(UpstreamError):
            service.verify_checkout(user, "cs_missing")

    def test_change_password(self, service: ScoutService, user):
        service.change_password(user, "correct-horse", "new-password-1")

        assert service.auth.login("reseller@example.com", "new-password-1").user.id == user.id
        with pytest.raises(AuthError):
            service.auth.login("reseller@example.com", "correct-horse")

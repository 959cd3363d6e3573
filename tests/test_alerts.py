"""Tests for price alert evaluation."""
from __future__ import annotations

import pytest

from scout_shared.alerts import (
    active_alert_count,
    calculate_profit_margin,
    check_alert_condition,
    describe_alert,
    evaluate_alerts,
    group_alerts_by_type,
    validate_alert,
)
from scout_shared.models import Book, PriceAlert


def _alert(alert_type: str, target=None, isbn=None, status="active", alert_id=1) -> PriceAlert:
    return PriceAlert(id=alert_id, user_id=1, alert_type=alert_type, isbn=isbn, target_value=target, status=status)


def _book(isbn: str, profit=None, cost=None, ebay=None, amazon=None) -> Book:
    return Book(id=1, user_id=1, isbn=isbn, title="A Book", profit=profit, your_cost=cost,
                ebay_price=ebay, amazon_price=amazon)


@pytest.mark.unit
class TestAlertConditions:
    def test_profitable(self):
        assert check_alert_condition(_alert("profitable"), profit=0.5)
        assert not check_alert_condition(_alert("profitable"), profit=None)

    def test_target_margin(self):
        alert = _alert("target_margin", 50)
        assert check_alert_condition(alert, profit_margin=50.0)
        assert not check_alert_condition(alert, profit_margin=49.9)
        assert not check_alert_condition(alert, profit_margin=None)

    def test_price_movements(self):
        assert check_alert_condition(_alert("price_drop", 10), current_price=9.99)
        assert not check_alert_condition(_alert("price_drop", 10), current_price=10.0)
        assert check_alert_condition(_alert("price_increase", 10), current_price=10.01)
        assert not check_alert_condition(_alert("price_increase", 10), current_price=None)

    def test_margin_with_zero_cost(self):
        assert calculate_profit_margin(5.0, 0) == 0.0
        assert calculate_profit_margin(5.0, 10.0) == 50.0

    def test_descriptions(self):
        assert describe_alert(_alert("profitable")) == "When any book becomes profitable"
        assert describe_alert(_alert("target_margin", 40)) == "When profit margin ≥ 40%"
        assert describe_alert(_alert("price_drop", 7.5)) == "When price drops below £7.50"


@pytest.mark.unit
class TestAlertValidation:
    def test_valid_alert(self):
        assert validate_alert("price_drop", 5.0) == []
        assert validate_alert("profitable", None) == []

    def test_missing_type(self):
        assert validate_alert(None, None) == ["Alert type is required"]

    def test_targeted_alert_needs_positive_target(self):
        assert "Target value must be greater than 0" in validate_alert("target_margin", 0)

    def test_unknown_values(self):
        errors = validate_alert("moon_phase", None, "carrier-pigeon")
        assert "Unknown alert type: moon_phase" in errors
        assert "Unknown notification method: carrier-pigeon" in errors


@pytest.mark.unit
class TestEvaluateAlerts:
    def test_isbn_scoped_alert_only_matches_its_book(self):
        alert = _alert("profitable", isbn="9780143127550")
        books = [_book("9780000000002", profit=5.0), _book("9780143127550", profit=-1.0)]
        assert evaluate_alerts([alert], books) == []

    def test_price_drop_uses_lowest_market_price(self):
        alert = _alert("price_drop", 10)
        book = _book("9780143127550", ebay=12.0, amazon=9.0)
        assert evaluate_alerts([alert], [book]) == [(alert, book)]

    def test_margin_needs_cost(self):
        alert = _alert("target_margin", 100)
        assert evaluate_alerts([alert], [_book("9780143127550", profit=6.0)]) == []
        assert len(evaluate_alerts([alert], [_book("9780143127550", profit=6.0, cost=5.0)])) == 1

    def test_inactive_alerts_are_skipped(self):
        alert = _alert("profitable", status="paused")
        assert evaluate_alerts([alert], [_book("9780143127550", profit=5.0)]) == []

    def test_each_alert_triggers_once(self):
        alert = _alert("profitable")
        books = [_book("9780143127550", profit=5.0), _book("9780000000002", profit=3.0)]
        assert len(evaluate_alerts([alert], books)) == 1

    def test_grouping_and_counts(self):
        alerts = [_alert("profitable"), _alert("price_drop", 5, alert_id=2, status="paused")]
        assert set(group_alerts_by_type(alerts)) == {"profitable", "price_drop"}
        assert active_alert_count(alerts) == 1

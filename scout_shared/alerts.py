from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from .models import ALERT_TYPES, NOTIFICATION_METHODS, Book, PriceAlert

TARGETED_TYPES = ("target_margin", "price_drop", "price_increase")


def check_alert_condition(
    alert: PriceAlert,
    profit: Optional[float] = None,
    profit_margin: Optional[float] = None,
    current_price: Optional[float] = None,
) -> bool:
    target = alert.target_value
    if alert.alert_type == "profitable":
        return (profit or 0) > 0
    if alert.alert_type == "target_margin":
        if not target or not profit_margin:
            return False
        return profit_margin >= target
    if alert.alert_type == "price_drop":
        if not target or not current_price:
            return False
        return current_price < target
    if alert.alert_type == "price_increase":
        if not target or not current_price:
            return False
        return current_price > target
    return False


def calculate_profit_margin(profit: float, cost: float) -> float:
    if cost == 0:
        return 0.0
    return (profit / cost) * 100


def describe_alert(alert: PriceAlert) -> str:
    if alert.alert_type == "profitable":
        return "When any book becomes profitable"
    if alert.alert_type == "target_margin":
        return f"When profit margin ≥ {alert.target_value:g}%"
    if alert.alert_type == "price_drop":
        return f"When price drops below £{alert.target_value:.2f}"
    if alert.alert_type == "price_increase":
        return f"When price increases above £{alert.target_value:.2f}"
    return "Unknown alert type"


def validate_alert(alert_type: Optional[str], target_value: Optional[float], notification_method: str = "toast") -> List[str]:
    """Return a list of problems with an alert definition. Empty means valid."""
    errors = []
    if not alert_type:
        errors.append("Alert type is required")
    elif alert_type not in ALERT_TYPES:
        errors.append(f"Unknown alert type: {alert_type}")
    if alert_type in TARGETED_TYPES and (target_value is None or target_value <= 0):
        errors.append("Target value must be greater than 0")
    if notification_method not in NOTIFICATION_METHODS:
        errors.append(f"Unknown notification method: {notification_method}")
    return errors


def group_alerts_by_type(alerts: Iterable[PriceAlert]) -> Dict[str, List[PriceAlert]]:
    grouped: Dict[str, List[PriceAlert]] = defaultdict(list)
    for alert in alerts:
        grouped[alert.alert_type].append(alert)
    return dict(grouped)


def active_alert_count(alerts: Iterable[PriceAlert]) -> int:
    return sum(1 for alert in alerts if alert.status == "active")


def _market_price(book: Book) -> Optional[float]:
    prices = [p for p in (book.ebay_price, book.amazon_price) if p is not None]
    return min(prices) if prices else None


def evaluate_alerts(alerts: Iterable[PriceAlert], books: Iterable[Book]) -> List[Tuple[PriceAlert, Book]]:
    """Match active alerts against books. An alert with an ISBN only looks at that book."""
    books = list(books)
    triggered = []
    for alert in alerts:
        if alert.status != "active":
            continue
        for book in books:
            if alert.isbn and alert.isbn != book.isbn:
                continue
            margin = None
            if book.profit is not None and book.your_cost:
                margin = calculate_profit_margin(book.profit, book.your_cost)
            if check_alert_condition(alert, book.profit, margin, _market_price(book)):
                triggered.append((alert, book))
                break
    return triggered

"""Repricing rules: validation and the price each strategy produces."""
from __future__ import annotations

from typing import Any, List, Optional

from .models import REPRICING_FREQUENCIES, REPRICING_PLATFORMS, REPRICING_STRATEGIES, RepricingRule
from .utils import round_money

VALUE_STRATEGIES = ("beat_by_percent", "beat_by_amount")


def _number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def validate_rule(
    platform: Optional[str],
    strategy: Optional[str],
    min_price: Any,
    max_price: Any,
    strategy_value: Any = None,
    run_frequency: Optional[str] = None,
) -> List[str]:
    """Return a list of problems with a rule definition. Empty means valid."""
    errors = []
    if not platform or not strategy or min_price is None or max_price is None:
        return ["Platform, strategy, min_price, and max_price are required"]
    if platform not in REPRICING_PLATFORMS:
        errors.append(f"Unknown platform: {platform}")
    if strategy not in REPRICING_STRATEGIES:
        errors.append(f"Unknown strategy: {strategy}")
    if run_frequency is not None and run_frequency not in REPRICING_FREQUENCIES:
        errors.append(f"Unknown run frequency: {run_frequency}")
    low, high = _number(min_price), _number(max_price)
    if low is None or high is None:
        errors.append("Min and max prices must be valid numbers")
    elif low < 0 or high < 0:
        errors.append("Prices cannot be negative")
    elif low >= high:
        errors.append("Min price must be less than max price")
    if strategy_value is None or strategy_value == "":
        if strategy in VALUE_STRATEGIES:
            errors.append("Strategy value is required for this pricing strategy")
    else:
        value = _number(strategy_value)
        if value is None or value < 0:
            errors.append("Strategy value must be a positive number")
    return errors


def calculate_new_price(current_price: float, competitor_price: float, rule: RepricingRule) -> float:
    """Apply the rule's strategy to the competitor price, then clamp to the rule's bounds."""
    value = rule.strategy_value
    if rule.strategy == "match_lowest":
        price = competitor_price
    elif rule.strategy == "beat_by_percent":
        price = competitor_price * (1 - value / 100) if value is not None else competitor_price
    elif rule.strategy == "beat_by_amount":
        price = competitor_price - value if value is not None else competitor_price
    else:
        # target_margin drives alerts; the listing keeps its price.
        price = current_price
    price = max(price, rule.min_price)
    price = min(price, rule.max_price)
    return round_money(price)


def repricing_reason(strategy: str, competitor_price: float, new_price: float) -> str:
    if strategy == "match_lowest":
        return f"Matched competitor price of £{competitor_price:.2f}"
    if strategy == "beat_by_percent":
        return f"Beat competitor price of £{competitor_price:.2f}"
    if strategy == "beat_by_amount":
        return f"Undercut competitor price of £{competitor_price:.2f}"
    return f"Repriced to £{new_price:.2f}"

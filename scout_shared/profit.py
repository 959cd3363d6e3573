"""Selling-fee and profit calculations for Amazon FBA, Amazon FBM and eBay UK."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import ProfitCalculation

PLATFORMS = ("amazon-fba", "amazon-fbm", "ebay")

# Flat costs used when estimating profit at scan time.
SCAN_FEE_RATE = 0.15
SCAN_SHIPPING_COST = 2.15
DEFAULT_PURCHASE_COST = 8.00


@dataclass(frozen=True)
class PlatformFees:
    name: str
    commission: float
    fulfillment: float
    storage: float
    closing_fee: float
    description: str


PLATFORM_FEES: Dict[str, PlatformFees] = {
    "amazon-fba": PlatformFees("Amazon FBA", 0.15, 2.50, 0.50, 0.0, "15% commission + fulfillment + storage fees"),
    "amazon-fbm": PlatformFees("Amazon FBM", 0.15, 0.0, 0.0, 0.0, "15% commission only"),
    "ebay": PlatformFees("eBay", 0.128, 0.0, 0.0, 0.30, "12.8% commission + £0.30 per sale"),
}


def fba_fulfillment_fee(weight_kg: float) -> float:
    """Amazon UK FBA fee for standard-size media."""
    if weight_kg <= 0.25:
        return 1.99
    if weight_kg <= 0.50:
        return 2.39
    if weight_kg <= 1.00:
        return 2.79
    if weight_kg <= 2.00:
        return 3.19
    return 3.19 + (weight_kg - 2.0) * 0.40


def estimate_book_weight(is_hardcover: bool = False) -> float:
    return 0.6 if is_hardcover else 0.3


def calculate_profit(
    platform: str,
    sale_price: float,
    purchase_cost: float,
    *,
    shipping_cost: float = 0.0,
    packaging_cost: float = 0.0,
    inbound_shipping_cost: float = 0.0,
    book_weight: float = 0.3,
) -> ProfitCalculation:
    if platform not in PLATFORM_FEES:
        raise ValueError(f"Unknown platform: {platform}")
    fees = PLATFORM_FEES[platform]
    is_fba = platform == "amazon-fba"

    commission_fee = sale_price * fees.commission
    fulfillment_fee = fba_fulfillment_fee(book_weight) if is_fba else fees.fulfillment

    # FBA covers outbound postage and packing; the seller pays to ship stock in.
    shipping = 0.0 if is_fba else shipping_cost
    packaging = 0.0 if is_fba else packaging_cost
    inbound = inbound_shipping_cost if is_fba else 0.0

    total_fees = commission_fee + fulfillment_fee + fees.storage + fees.closing_fee
    total_costs = purchase_cost + shipping + packaging + inbound
    net_profit = sale_price - total_fees - total_costs
    margin = (net_profit / sale_price) * 100 if sale_price > 0 else 0.0
    roi = (net_profit / total_costs) * 100 if total_costs > 0 else 0.0

    return ProfitCalculation(
        platform=platform,
        sale_price=round(sale_price, 2),
        purchase_cost=round(purchase_cost, 2),
        commission_fee=round(commission_fee, 2),
        fulfillment_fee=round(fulfillment_fee, 2),
        storage_fee=round(fees.storage, 2),
        closing_fee=round(fees.closing_fee, 2),
        total_fees=round(total_fees, 2),
        shipping_cost=round(shipping, 2),
        packaging_cost=round(packaging, 2),
        inbound_shipping_cost=round(inbound, 2),
        total_costs=round(total_costs, 2),
        net_profit=round(net_profit, 2),
        profit_margin=round(margin, 2),
        roi=round(roi, 2),
    )


def calculate_profit_all_platforms(
    sale_price: float, purchase_cost: float, book_weight: float = 0.3
) -> Dict[str, ProfitCalculation]:
    results = {}
    for platform in PLATFORMS:
        is_fba = platform == "amazon-fba"
        results[platform] = calculate_profit(
            platform,
            sale_price,
            purchase_cost,
            book_weight=book_weight,
            shipping_cost=0.0 if is_fba else 2.50,
            packaging_cost=0.0 if is_fba else 0.50,
            inbound_shipping_cost=0.20 if is_fba else 0.0,
        )
    return results


def best_platform(
    sale_price: float, purchase_cost: float, book_weight: float = 0.3
) -> Tuple[str, ProfitCalculation]:
    """Platform with the highest ROI. Ties go to the first platform in ``PLATFORMS``."""
    results = calculate_profit_all_platforms(sale_price, purchase_cost, book_weight)
    platform = max(PLATFORMS, key=lambda name: (results[name].roi, -PLATFORMS.index(name)))
    return platform, results[platform]


def calculate_verdict(profit: float, roi: float, confidence: str = "high") -> Tuple[str, str]:
    if profit >= 5 and roi >= 50:
        return "BUY", "Strong profit with good ROI"
    if profit >= 3 and roi >= 30:
        return "BUY", "Decent profit margin"
    if 0 < profit < 3:
        return "MARGINAL", "Low profit - consider volume"
    if profit <= 0:
        return "SKIP", "No profit at this price"
    if confidence == "low":
        return "MARGINAL", "Price data uncertain"
    return "MARGINAL", "Review pricing carefully"


def estimate_scan_profit(lowest_price: Optional[float], purchase_cost: Optional[float] = None) -> Optional[float]:
    """Rough profit shown at scan time: sale price less cost, 15% fees and postage."""
    if lowest_price is None:
        return None
    cost = DEFAULT_PURCHASE_COST if purchase_cost is None else purchase_cost
    return round(lowest_price - cost - lowest_price * SCAN_FEE_RATE - SCAN_SHIPPING_COST, 2)


def book_status_for_profit(profit: Optional[float]) -> str:
    if profit is None:
        return "pending"
    if abs(profit) < 0.01:
        return "break-even"
    return "profitable" if profit > 0 else "loss"

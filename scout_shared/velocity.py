"""Sales velocity from an Amazon Best Sellers Rank, and buy advice built on it."""
from __future__ import annotations

from typing import Optional, Tuple

from .models import BuyRecommendation, SalesVelocity

# (max rank, rating, sales/month, confidence, description, recommendation, rank category, competition)
BOOK_BANDS: Tuple[Tuple[Optional[int], str, str, str, str, str, str, str], ...] = (
    (5000, "very_fast", "30-100+", "high", "Bestseller - sells multiple times daily", "strong_buy", "Bestseller", "high"),
    (50000, "fast", "10-30", "high", "Hot seller - sells daily to weekly", "strong_buy", "Hot Seller", "medium"),
    (200000, "medium", "3-10", "medium", "Steady mover - sells weekly to bi-weekly", "buy", "Steady Seller", "medium"),
    (500000, "slow", "1-3", "medium", "Slow mover - sells monthly", "maybe", "Slow Mover", "low"),
    (1000000, "very_slow", "0-1", "low", "Very slow - may take months to sell", "skip", "Very Slow", "low"),
    (None, "very_slow", "<1", "low", "Rarely sells - high risk", "skip", "Dead Stock", "low"),
)
OTHER_BANDS: Tuple[Tuple[Optional[int], str, str, str, str, str, str, str], ...] = (
    (1000, "very_fast", "50-200+", "high", "Top seller - sells multiple times daily", "strong_buy", "Top Seller", "high"),
    (10000, "fast", "15-50", "high", "Fast mover - sells daily", "strong_buy", "Fast Mover", "medium"),
    (50000, "medium", "5-15", "medium", "Moderate seller - sells weekly", "buy", "Moderate Seller", "medium"),
    (100000, "slow", "1-5", "medium", "Slow seller - sells bi-weekly to monthly", "maybe", "Slow Seller", "low"),
    (None, "very_slow", "<1", "low", "Very rare sales - avoid", "skip", "Very Slow", "low"),
)

TIME_TO_SELL = {
    "very_fast": "1-7 days",
    "fast": "1-2 weeks",
    "medium": "2-4 weeks",
    "slow": "1-3 months",
    "very_slow": "3+ months",
}

MIN_WORTHWHILE_PROFIT = 3.0
GOOD_PROFIT = 5.0


def calculate_velocity(
    sales_rank: int,
    category: str = "Books",
    profit: Optional[float] = None,
    profit_margin: Optional[float] = None,
    purchase_cost: Optional[float] = None,
) -> SalesVelocity:
    """
    Map a sales rank onto a velocity band.

    The Books category holds millions of titles, so its bands are much wider
    than those used for any other category. When profit, margin and cost are
    all given the band's recommendation is replaced by :func:`should_buy`.
    """
    if sales_rank < 1:
        raise ValueError("Sales rank must be 1 or more")
    bands = BOOK_BANDS if "book" in (category or "").lower() else OTHER_BANDS
    for limit, rating, per_month, confidence, description, recommendation, rank_category, competition in bands:
        if limit is None or sales_rank <= limit:
            break
    velocity = SalesVelocity(
        rating=rating,
        estimated_sales_per_month=per_month,
        confidence=confidence,
        description=description,
        buy_recommendation=recommendation,
        rank_category=rank_category,
        competitive_level=competition,
    )
    if profit is not None and profit_margin is not None and purchase_cost is not None:
        advice = should_buy(rating, profit, profit_margin, purchase_cost)
        velocity.buy_recommendation = advice.recommendation
        velocity.description = f"{description} - {advice.reason}"
    return velocity


def time_to_sell(rating: str) -> str:
    return TIME_TO_SELL.get(rating, "Unknown")


def should_buy(rating: str, profit: float, profit_margin: float = 0.0, purchase_cost: float = 0.0) -> BuyRecommendation:
    """Plain rules: profit first, then how long the cash would sit on a shelf."""
    fast = rating in ("very_fast", "fast")
    if profit < MIN_WORTHWHILE_PROFIT:
        reason = "Losing money on this book" if profit < 0 else "Profit too low - not worth the effort"
        return BuyRecommendation("skip", reason, 0)
    if rating == "very_slow":
        return BuyRecommendation("skip", "Takes too long to sell - cash will be tied up", 10)
    if fast and profit >= GOOD_PROFIT:
        return BuyRecommendation("strong_buy", "Sells fast with good profit!", 100)
    if (rating == "medium" and profit >= GOOD_PROFIT) or fast:
        return BuyRecommendation("buy", "Decent profit and reasonable sales speed", 70)
    if rating == "slow" or profit < GOOD_PROFIT:
        reason = "Slow to sell - consider if profit is high" if rating == "slow" else "Low profit margin - only buy if sales are fast"
        return BuyRecommendation("maybe", reason, 40)
    return BuyRecommendation("maybe", "Borderline - use your judgment", 50)

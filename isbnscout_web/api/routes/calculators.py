"""Postage and per-platform profit calculators."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from scout_shared.profit import best_platform, calculate_profit_all_platforms, calculate_verdict
from scout_shared.shipping import all_shipping_options, cheapest_shipping, recommended_shipping

router = APIRouter()


class ProfitRequest(BaseModel):
    sale_price: float = Field(..., gt=0, description="Expected sale price in pounds")
    purchase_cost: float = Field(..., ge=0, description="What the book cost you")
    book_weight: float = Field(0.3, gt=0, description="Weight in kg")
    confidence: str = Field("high", description="How sure you are of the sale price")

    class Config:
        json_schema_extra = {"example": {"sale_price": 14.99, "purchase_cost": 2.0, "book_weight": 0.4}}


@router.get("/shipping/options")
async def shipping_options(
    weight_kg: float = Query(..., gt=0, description="Parcel weight in kg"),
    item_value: float = Query(0.0, ge=0, description="Item value in pounds"),
) -> Dict[str, Any]:
    return {
        "options": [rate.to_dict() for rate in all_shipping_options(weight_kg)],
        "cheapest": cheapest_shipping(weight_kg).to_dict(),
        "recommended": recommended_shipping(weight_kg, item_value).to_dict(),
    }


@router.post("/profit/calculate")
async def calculate_profit(request: ProfitRequest) -> Dict[str, Any]:
    """Profit on every platform, the best one by ROI, and a buy verdict."""
    results = calculate_profit_all_platforms(request.sale_price, request.purchase_cost, request.book_weight)
    platform, best = best_platform(request.sale_price, request.purchase_cost, request.book_weight)
    verdict, reason = calculate_verdict(best.net_profit, best.roi, request.confidence)
    return {
        "platforms": {name: calc.to_dict() for name, calc in results.items()},
        "best_platform": platform,
        "best": best.to_dict(),
        "verdict": verdict,
        "reason": reason,
    }

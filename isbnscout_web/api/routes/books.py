"""Book scanning, pricing and export routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.export import export_filename
from scout_shared.models import User
from scout_shared.velocity import calculate_velocity, should_buy, time_to_sell

from ...logging_middleware import log_custom_event
from ..dependencies import (
    current_user,
    get_service,
    optional_user,
    rate_limit,
    require_subscription,
    visitor_fingerprint,
)

router = APIRouter()


class PricingRequest(BaseModel):
    isbn: str = Field(..., description="ISBN-10 or ISBN-13 to price")


class ScanRequest(BaseModel):
    """Schema for recording a scan. Anything left out is looked up."""

    isbn: str = Field(..., description="Scanned ISBN, or an AI- placeholder from photo recognition")
    title: Optional[str] = Field(None, description="Title, if already known")
    author: Optional[str] = Field(None, description="Author, if already known")
    publisher: Optional[str] = None
    thumbnail: Optional[str] = None
    amazon_price: Optional[float] = Field(None, ge=0)
    ebay_price: Optional[float] = Field(None, ge=0)
    your_cost: Optional[float] = Field(None, ge=0, description="What you paid, in pounds")
    profit: Optional[float] = None
    status: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {"isbn": "9780143127550", "your_cost": 1.5}
        }


class BookUpdateRequest(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    thumbnail: Optional[str] = None
    amazon_price: Optional[float] = Field(None, ge=0)
    ebay_price: Optional[float] = Field(None, ge=0)
    your_cost: Optional[float] = Field(None, ge=0)
    profit: Optional[float] = None
    status: Optional[str] = None


class VelocityRequest(BaseModel):
    sales_rank: int = Field(..., ge=1, description="Amazon Best Sellers Rank")
    category: Optional[str] = Field("Books", description="Amazon category the rank belongs to")
    profit: Optional[float] = Field(None, description="Expected profit in pounds")
    profit_margin: Optional[float] = Field(None, description="Expected margin, percent")
    your_cost: Optional[float] = Field(None, ge=0, description="Purchase cost in pounds")

    class Config:
        json_schema_extra = {"example": {"sales_rank": 45000, "profit": 6.5, "profit_margin": 40, "your_cost": 2.0}}


@router.get("/demo-lookup")
async def demo_lookup(
    isbn: str = Query(..., description="ISBN to look up"),
    user: Optional[User] = Depends(optional_user),
    visitor: str = Depends(visitor_fingerprint),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Landing-page lookup. No account needed; each lookup uses one of the visitor's free trial scans."""
    return service.demo_lookup(isbn, user=user, visitor=visitor)


@router.post("/calculate-velocity")
async def sales_velocity(request: VelocityRequest) -> Dict[str, Any]:
    """How fast a book sells at a given Amazon sales rank, and whether it is worth buying."""
    profit_known = None not in (request.profit, request.profit_margin, request.your_cost)
    velocity = calculate_velocity(
        request.sales_rank,
        request.category or "Books",
        request.profit if profit_known else None,
        request.profit_margin if profit_known else None,
        request.your_cost if profit_known else None,
    )
    advice = should_buy(velocity.rating, request.profit or 0.0, request.profit_margin or 0.0, request.your_cost or 0.0)
    return {
        "velocity": velocity.to_dict(),
        "rank_category": velocity.rank_category,
        "competitive_level": velocity.competitive_level,
        "time_to_sell": time_to_sell(velocity.rating),
        "buy_recommendation": advice.to_dict(),
    }


@router.post("/lookup-pricing")
async def lookup_pricing(
    request: PricingRequest,
    _: None = Depends(rate_limit("pricing")),
    user: User = Depends(require_subscription),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.lookup_pricing(request.isbn, user)


@router.post("")
async def record_scan(
    request: ScanRequest,
    user: User = Depends(require_subscription),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    book = service.record_scan(user, request.model_dump(exclude_none=True))
    log_custom_event("scan_recorded", user_id=user.id, isbn=book.isbn, status=book.status)
    return book.to_dict()


@router.get("")
async def list_books(
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [book.to_dict() for book in service.list_books(user)]


@router.get("/export")
async def export_books(
    fmt: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    profitable_only: bool = Query(False),
    date_from: Optional[str] = Query(None, description="ISO date, inclusive"),
    date_to: Optional[str] = Query(None, description="ISO date, inclusive"),
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Response:
    """Download the user's scans as CSV or JSON."""
    body = service.export_books(user, fmt, profitable_only, date_from, date_to)
    media_type = "text/csv" if fmt == "csv" else "application/json"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(fmt)}"'},
    )


@router.patch("/{isbn}")
async def update_book(
    isbn: str,
    request: BookUpdateRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.update_book(user, isbn, request.model_dump(exclude_unset=True)).to_dict()


@router.get("/{isbn}/prices")
async def book_prices(isbn: str, service: ScoutService = Depends(get_service)) -> Dict[str, Any]:
    return service.book_prices(isbn)


@router.delete("/{isbn}")
async def delete_book(
    isbn: str,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, str]:
    service.delete_book(user, isbn)
    log_custom_event("book_deleted", user_id=user.id, isbn=isbn)
    return {"message": "Book deleted successfully"}

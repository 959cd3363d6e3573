"""Marketplace listing routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.models import User

from ...logging_middleware import log_custom_event
from ..dependencies import current_user, get_service

router = APIRouter()


class CreateListingRequest(BaseModel):
    """Schema for listing a scanned book on eBay or Amazon."""

    book_id: int = Field(..., description="Scanned book to list")
    platform: str = Field(..., pattern="^(ebay|amazon)$", description="ebay or amazon")
    price: float = Field(..., gt=0, description="Listing price in GBP")
    condition: str = Field("Good", description="Condition (New, Like New, Very Good, Good, Acceptable)")
    quantity: int = Field(1, gt=0, description="Number of copies")
    description: Optional[str] = None
    inventory_item_id: Optional[int] = Field(None, description="Inventory copy to mark as listed")

    class Config:
        json_schema_extra = {
            "example": {"book_id": 1, "platform": "ebay", "price": 9.99, "condition": "Very Good", "quantity": 1}
        }


class UpdateListingRequest(BaseModel):
    status: Optional[str] = Field(None, pattern="^(draft|active|failed|ended)$")
    price: Optional[float] = Field(None, gt=0)
    condition: Optional[str] = None
    quantity: Optional[int] = Field(None, gt=0)
    description: Optional[str] = None


@router.post("")
async def create_listing(
    request: CreateListingRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    listing = service.create_listing(user, request.model_dump())
    log_custom_event("listing_created", user_id=user.id, platform=listing.platform, status=listing.status)
    success = listing.status != "failed"
    return {
        "success": success,
        "listing": listing.to_dict(),
        "message": f"Successfully listed on {listing.platform}!" if success else listing.error_message,
    }


@router.get("")
async def list_listings(
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [listing.to_dict() for listing in service.list_listings(user)]


@router.get("/book/{book_id}")
async def listings_for_book(
    book_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [listing.to_dict() for listing in service.listings_for_book(user, book_id)]


@router.get("/{listing_id}")
async def get_listing(
    listing_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.get_listing(user, listing_id).to_dict()


@router.patch("/{listing_id}")
async def update_listing(
    listing_id: int,
    request: UpdateListingRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Edit a listing locally, e.g. mark it ended once the copy sold elsewhere."""
    listing = service.update_listing(user, listing_id, request.model_dump(exclude_unset=True))
    return listing.to_dict()

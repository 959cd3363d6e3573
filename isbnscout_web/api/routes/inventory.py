"""Inventory tracking routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.models import User

from ..dependencies import current_user, get_service

router = APIRouter()


class InventoryCreateRequest(BaseModel):
    """Schema for adding a purchased copy to inventory."""

    book_id: int = Field(..., description="Scanned book this copy belongs to")
    purchase_date: str = Field(..., description="ISO date of purchase")
    purchase_cost: float = Field(..., ge=0, description="Price paid, in pounds")
    condition: str = Field(..., description="Condition, e.g. Good or Very Good")
    purchase_source: Optional[str] = Field(None, description="Where it was bought")
    location: Optional[str] = Field(None, description="Shelf or box")
    sku: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "book_id": 1,
                "purchase_date": "2024-05-04",
                "purchase_cost": 1.5,
                "condition": "Very Good",
                "purchase_source": "Charity shop",
            }
        }


class InventoryUpdateRequest(BaseModel):
    purchase_date: Optional[str] = None
    purchase_cost: Optional[float] = Field(None, ge=0)
    purchase_source: Optional[str] = None
    condition: Optional[str] = None
    location: Optional[str] = None
    sku: Optional[str] = None
    listing_id: Optional[int] = None
    sold_date: Optional[str] = None
    sale_price: Optional[float] = Field(None, ge=0)
    sold_platform: Optional[str] = None
    actual_profit: Optional[float] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class SaleRequest(BaseModel):
    sale_price: float = Field(..., ge=0, description="What the copy sold for, in pounds")
    sold_platform: Optional[str] = Field(None, description="ebay, amazon, or somewhere else")
    sold_date: Optional[str] = Field(None, description="ISO timestamp, defaults to now")


@router.post("")
async def create_item(
    request: InventoryCreateRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.create_inventory_item(user, request.model_dump(exclude_none=True)).to_dict()


@router.get("")
async def list_items(
    status: Optional[str] = None,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in service.list_inventory(user, status)]


@router.get("/book/{book_id}")
async def items_for_book(
    book_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in service.inventory_for_book(user, book_id)]


@router.get("/{item_id}")
async def get_item(
    item_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.get_inventory_item(user, item_id).to_dict()


@router.patch("/{item_id}")
async def update_item(
    item_id: int,
    request: InventoryUpdateRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.update_inventory_item(user, item_id, request.model_dump(exclude_unset=True)).to_dict()


@router.post("/{item_id}/sale")
async def record_sale(
    item_id: int,
    request: SaleRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Mark a copy sold and work out the actual profit."""
    item = service.record_sale(user, item_id, request.sale_price, request.sold_platform, request.sold_date)
    return item.to_dict()


@router.delete("/{item_id}")
async def delete_item(
    item_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    service.delete_inventory_item(user, item_id)
    return {"message": "Inventory item deleted successfully"}

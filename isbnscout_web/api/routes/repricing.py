"""Repricing rule and run routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.models import User

from ...logging_middleware import log_custom_event
from ..dependencies import current_user, get_service

router = APIRouter()


class RuleRequest(BaseModel):
    """Schema for a repricing rule. Leave ``listing_id`` out to cover every listing on the platform."""

    listing_id: Optional[int] = Field(None, description="Only reprice this listing")
    platform: str = Field(..., description="ebay, amazon or all")
    strategy: str = Field(..., description="match_lowest, beat_by_percent, beat_by_amount or target_margin")
    strategy_value: Optional[float] = Field(None, description="Percent or pounds for the beat_by strategies")
    min_price: float = Field(..., description="Never go below this price")
    max_price: float = Field(..., description="Never go above this price")
    is_active: bool = True
    run_frequency: str = Field("hourly", description="hourly, daily or weekly")

    class Config:
        json_schema_extra = {
            "example": {"platform": "ebay", "strategy": "beat_by_amount", "strategy_value": 0.1,
                        "min_price": 4.0, "max_price": 20.0}
        }


class RuleUpdateRequest(BaseModel):
    listing_id: Optional[int] = None
    platform: Optional[str] = None
    strategy: Optional[str] = None
    strategy_value: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    is_active: Optional[bool] = None
    run_frequency: Optional[str] = None


class RunRequest(BaseModel):
    listing_id: int = Field(..., description="Listing to reprice now")


@router.post("/rules")
async def create_rule(
    request: RuleRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    rule = service.create_repricing_rule(user, request.model_dump())
    log_custom_event("repricing_rule_created", user_id=user.id, strategy=rule.strategy)
    return rule.to_dict()


@router.get("/rules")
async def list_rules(
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [rule.to_dict() for rule in service.list_repricing_rules(user)]


@router.get("/rules/{rule_id}")
async def get_rule(
    rule_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.get_repricing_rule(user, rule_id).to_dict()


@router.patch("/rules/{rule_id}")
async def update_rule(
    rule_id: int,
    request: RuleUpdateRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.update_repricing_rule(user, rule_id, request.model_dump(exclude_unset=True)).to_dict()


@router.delete("/rules/{rule_id}")
async def delete_rule(
    rule_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, bool]:
    service.delete_repricing_rule(user, rule_id)
    return {"success": True}


@router.post("/run")
async def run_repricing(
    request: RunRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Reprice one listing now with its most specific active rule."""
    result = service.reprice_listing(user, request.listing_id)
    log_custom_event("repricing_run", user_id=user.id, listing_id=result.listing_id, success=result.success)
    return result.to_dict()


@router.get("/history")
async def repricing_history(
    listing_id: Optional[int] = None,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in service.repricing_history(user, listing_id)]

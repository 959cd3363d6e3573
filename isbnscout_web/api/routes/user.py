"""Account status, credentials and usage routes."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from isbnscout.subscriptions import check_subscription_access
from scout_shared.models import User

from ..dependencies import current_user, get_service, optional_user, visitor_fingerprint

router = APIRouter()


class CredentialsRequest(BaseModel):
    """Marketplace API credentials for listing on the user's behalf."""

    platform: str = Field(..., pattern="^(ebay|amazon)$", description="ebay or amazon")
    credentials: Dict[str, Any] = Field(..., description="Platform-specific keys and tokens")

    class Config:
        json_schema_extra = {
            "example": {
                "platform": "ebay",
                "credentials": {"app_id": "...", "cert_id": "...", "oauth_token": "..."},
            }
        }


@router.get("/user/trial-status")
async def user_trial_status(user: User = Depends(current_user)) -> Dict[str, Any]:
    status = check_subscription_access(user)
    return {
        "tier": status.tier,
        "status": status.status,
        "has_access": status.has_access,
        "days_remaining": status.days_remaining,
        "trial_ends_at": user.trial_ends_at,
        "expires_at": status.expires_at,
    }


@router.get("/user/scan-limits")
async def user_scan_limits(
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.scan_limits.scan_limit_info(user).to_dict()


@router.get("/trial/status")
async def trial_status(
    user: Optional[User] = Depends(optional_user),
    visitor: str = Depends(visitor_fingerprint),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """
    Trial state for the landing page.

    Paid subscribers get their tier only. Everyone else, signed in or not,
    is counted against the anonymous per-visitor scan allowance.
    """
    if not service.trials.counts_against_trial(user):
        return {"is_trial": False, "tier": user.subscription_tier, "status": user.subscription_status}
    payload = service.trials.get_trial_status(visitor).to_dict()
    payload["is_trial"] = True
    return payload


@router.post("/credentials")
async def save_credentials(
    request: CredentialsRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    saved = service.save_credentials(user, request.platform, request.credentials)
    return {"success": True, "platform": saved.platform, "is_active": saved.is_active}


@router.get("/credentials/{platform}")
async def get_credentials(
    platform: str,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return service.credentials_summary(user, platform)


@router.get("/usage")
async def api_usage(service: ScoutService = Depends(get_service)) -> Dict[str, Any]:
    return service.api_usage()

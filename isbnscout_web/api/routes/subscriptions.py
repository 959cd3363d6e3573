"""Stripe checkout, billing portal and webhook routes."""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from isbnscout.billing import PLANS, BillingError
from isbnscout.errors import UpstreamError, ValidationFailed
from isbnscout.service import ScoutService
from isbnscout.subscriptions import check_subscription_access
from scout_shared.models import User

from ...config import settings
from ...logging_middleware import log_custom_event
from ..dependencies import current_user, get_service

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutRequest(BaseModel):
    plan_id: str = Field(..., description="basic, pro or enterprise")
    success_url: Optional[str] = Field(None, description="Defaults to APP_URL/dashboard?checkout=success")
    cancel_url: Optional[str] = Field(None, description="Defaults to APP_URL/pricing")

    class Config:
        json_schema_extra = {"example": {"plan_id": "pro"}}


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


class VerifyRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Checkout session id from the success URL")


@router.get("/plans")
async def list_plans() -> Dict[str, Any]:
    return {"plans": [asdict(plan) for plan in PLANS.values()]}


@router.post("/checkout")
async def create_checkout(
    request: CheckoutRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, str]:
    """Start a Stripe Checkout session for a paid plan."""
    success_url = request.success_url or f"{settings.APP_URL}/dashboard?checkout=success"
    cancel_url = request.cancel_url or f"{settings.APP_URL}/pricing"
    session = service.start_checkout(user, request.plan_id, success_url, cancel_url)
    log_custom_event("checkout_started", user_id=user.id, plan_id=request.plan_id)
    return session


@router.post("/verify")
async def verify_checkout(
    request: VerifyRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Upgrade the account from the checkout success page without waiting for the webhook."""
    result = service.verify_checkout(user, request.session_id)
    log_custom_event("checkout_verified", user_id=user.id, plan_id=result["plan_id"])
    return result


@router.post("/portal")
async def create_portal(
    request: PortalRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, str]:
    if not user.stripe_customer_id:
        raise ValidationFailed("No billing account found for this user")
    try:
        url = service.billing.create_portal_session(
            user.stripe_customer_id, request.return_url or f"{settings.APP_URL}/dashboard"
        )
    except BillingError as exc:
        raise UpstreamError(str(exc)) from exc
    return {"url": url}


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Apply a signed Stripe event. The raw body is needed for the signature check."""
    payload = await request.body()
    result = service.handle_billing_webhook(payload, stripe_signature)
    logger.info("Stripe webhook %s handled=%s", result["type"], result["handled"])
    return {"received": True, **result}


@router.get("/status")
async def subscription_status(user: User = Depends(current_user)) -> Dict[str, Any]:
    return check_subscription_access(user).to_dict()

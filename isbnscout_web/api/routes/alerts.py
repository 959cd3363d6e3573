"""Price alert routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.alerts import describe_alert
from scout_shared.models import PriceAlert, User

from ..dependencies import current_user, get_service

router = APIRouter()


class AlertRequest(BaseModel):
    alert_type: str = Field(..., description="profitable, target_margin, price_drop or price_increase")
    isbn: Optional[str] = Field(None, description="Only watch this book")
    target_value: Optional[float] = Field(None, description="Margin percent or price in pounds")
    notification_method: str = Field("toast", description="toast, email or push")
    notes: Optional[str] = None


class AlertUpdateRequest(BaseModel):
    alert_type: Optional[str] = None
    isbn: Optional[str] = None
    target_value: Optional[float] = None
    notification_method: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


def _alert_payload(alert: PriceAlert) -> Dict[str, Any]:
    payload = alert.to_dict()
    payload["description"] = describe_alert(alert)
    return payload


@router.post("")
async def create_alert(
    request: AlertRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return _alert_payload(service.create_alert(user, request.model_dump()))


@router.get("")
async def list_alerts(
    status: Optional[str] = None,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return [_alert_payload(alert) for alert in service.list_alerts(user, status)]


@router.post("/check")
async def check_alerts(
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Evaluate active alerts against every scanned book."""
    triggered = service.check_alerts(user)
    return {
        "triggered": [
            {"alert": _alert_payload(entry["alert"]), "book": entry["book"].to_dict()}
            for entry in triggered
        ],
        "count": len(triggered),
    }


@router.patch("/{alert_id}")
async def update_alert(
    alert_id: int,
    request: AlertUpdateRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    return _alert_payload(service.update_alert(user, alert_id, request.model_dump(exclude_unset=True)))


@router.delete("/{alert_id}")
async def delete_alert(
    alert_id: int,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    service.delete_alert(user, alert_id)
    return {"message": "Alert deleted"}

"""Offline scan import and scan history."""
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.models import User

from ...logging_middleware import log_custom_event
from ..dependencies import current_user, get_service

router = APIRouter()


class ScanSyncRequest(BaseModel):
    scans: List[Dict[str, Any]] = Field(..., description="Scans captured while offline")


@router.post("/sync")
async def sync_scans(
    request: ScanSyncRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    result = service.sync_scans(user, request.scans)
    log_custom_event("scans_synced", user_id=user.id, synced=result["synced"], failed=result["failed"])
    return result


@router.get("/history")
async def scan_history(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    history = service.scan_history(user, limit, offset)
    history["scans"] = [book.to_dict() for book in history["scans"]]
    return history

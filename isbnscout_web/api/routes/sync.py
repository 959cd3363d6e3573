"""Sync queue status and manual trigger."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from isbnscout.service import ScoutService

from ...logging_middleware import log_custom_event
from ..dependencies import get_service

router = APIRouter()


@router.get("/status")
async def sync_status(service: ScoutService = Depends(get_service)) -> Dict[str, Any]:
    return service.sync_queue.status()


@router.post("/trigger")
async def trigger_sync(service: ScoutService = Depends(get_service)) -> Dict[str, Any]:
    """Push one batch of queued operations to the remote server now."""
    result = service.sync_queue.process()
    log_custom_event("sync_triggered", synced=result.synced, failed=result.failed)
    payload = result.to_dict()
    payload["status"] = service.sync_queue.status()
    return payload

"""Offline price cache routes used by the scanner before it loses signal."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.price_cache import CACHE_MAX_AGE_DAYS

from ..dependencies import get_service, rate_limit

router = APIRouter()


class OfflineLookupRequest(BaseModel):
    isbn: str = Field(..., description="ISBN-10 or ISBN-13")
    title: Optional[str] = None
    author: Optional[str] = Field(None, description="Used for the author heuristic when nothing is cached")
    publisher: Optional[str] = None


class CacheImportRequest(BaseModel):
    prices: List[Dict[str, Any]] = Field(..., description="Rows previously produced by /export")


@router.post("/lookup")
async def offline_lookup(
    request: OfflineLookupRequest,
    _: None = Depends(rate_limit("api")),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Answer from the cache, falling back to author and publisher heuristics."""
    result = service.offline_lookup(request.isbn, request.title, request.author, request.publisher)
    return result.to_dict()


@router.get("/stats")
async def cache_stats(service: ScoutService = Depends(get_service)) -> Dict[str, int]:
    return service.price_cache.get_stats()


@router.get("/export")
async def export_cache(service: ScoutService = Depends(get_service)) -> Dict[str, Any]:
    prices = service.price_cache.export_cache()
    return {"prices": prices, "count": len(prices)}


@router.post("/import")
async def import_cache(
    request: CacheImportRequest,
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    imported = service.price_cache.import_cache(request.prices)
    return {"imported": imported}


@router.post("/cleanup")
async def cleanup_cache(
    days: int = Query(CACHE_MAX_AGE_DAYS, ge=1, description="Drop entries cached longer ago than this"),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    removed = service.price_cache.clear_old_cache(days)
    return {"removed": removed, "days": days}

"""
Cache Management API

Provides endpoints for cache monitoring and manual operations.

Endpoints:
- Statistics for dashboard insights
- Health check for monitoring/alerting
- Invalidation by tag, or of everything
- Statistics reset
"""

import logging
import platform
import time
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from src.cache import CacheService
from api.dependencies import get_cache_service


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class CacheStatsResponse(BaseModel):
    """Cache statistics."""
    enabled: bool
    backend: str
    hits: int
    misses: int
    sets: int
    deletes: int
    errors: int
    coalesced: int
    hit_rate: float = Field(..., description="Hits as a percentage of lookups")
    local_entries: int
    inflight: int


class CacheOverviewResponse(BaseModel):
    """Statistics plus process info."""
    stats: CacheStatsResponse
    uptime_seconds: float
    python_version: str


class CacheHealthResponse(BaseModel):
    """Cache health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    backend: str
    detail: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    message: str
    keys_invalidated: Optional[int] = None
    duration_ms: float


class ResetStatsResponse(BaseModel):
    success: bool
    message: str


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=CacheOverviewResponse)
async def get_cache_stats(
    request: Request,
    cache: CacheService = Depends(get_cache_service),
):
    """
    Get current cache statistics.

    Note: Stats are reset on application restart.
    """
    started_at = getattr(request.app.state, "started_at", None)
    uptime = time.monotonic() - started_at if started_at is not None else 0.0

    return CacheOverviewResponse(
        stats=CacheStatsResponse(**cache.get_stats()),
        uptime_seconds=round(uptime, 3),
        python_version=platform.python_version(),
    )


@router.get("/health", response_model=CacheHealthResponse)
async def cache_health_check(cache: CacheService = Depends(get_cache_service)):
    """
    Check cache infrastructure health.

    Unhealthy means Redis is configured but unreachable; requests are
    still served from the in-process store.
    """
    health: Dict[str, Any] = await cache.health_check()

    return CacheHealthResponse(
        status="healthy" if health["healthy"] else "unhealthy",
        backend=health["backend"],
        detail=health["status"],
        latency_ms=health.get("latency_ms"),
        error=health.get("error"),
    )


@router.delete("", response_model=InvalidationResponse)
async def invalidate_cache(
    tag: Optional[str] = Query(default=None, description="Tag to invalidate, e.g. 'metrics'"),
    clear_all: bool = Query(default=False, alias="all", description="Clear the whole cache"),
    cache: CacheService = Depends(get_cache_service),
):
    """
    Invalidate cache by tag, or clear everything with all=true.

    CAUTION: all=true will temporarily increase load on the external
    monitoring APIs until caches are repopulated.
    """
    if not clear_all and not tag:
        raise HTTPException(
            status_code=400,
            detail='Must provide either "tag" or "all=true" query parameter',
        )

    start = datetime.utcnow()

    try:
        if clear_all:
            await cache.clear()
            count = None
            message = "All cache cleared"
        else:
            count = await cache.invalidate_by_tag(tag)
            message = f"Cache invalidated for tag: {tag}"
    except Exception as e:
        logger.error(f"Failed to invalidate cache: {e}")
        raise HTTPException(status_code=500, detail="Failed to invalidate cache")

    elapsed = (datetime.utcnow() - start).total_seconds() * 1000

    return InvalidationResponse(
        success=True,
        message=message,
        keys_invalidated=count,
        duration_ms=elapsed,
    )


@router.post("/reset-stats", response_model=ResetStatsResponse)
async def reset_cache_stats(cache: CacheService = Depends(get_cache_service)):
    """Reset hit/miss/set/delete counters."""
    cache.reset_stats()
    return ResetStatsResponse(success=True, message="Cache statistics reset")

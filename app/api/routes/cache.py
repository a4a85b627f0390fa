from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.core.auth import verify_api_key
from app.core.dependencies import get_cache_service
from app.core.errors import CacheUnavailableError
from app.core.rate_limit import RATE_LIMITED_RESPONSES, rate_limit
from app.schemas.cache import CacheInfoResponse, FlushResponse, StatsResponse
from app.services.cache_service import CacheService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Cache"])

# Resource statistics are computed by the CRUD handlers and cached under these keys
STATS_KEYS = {
    "users": "users:stats",
    "products": "products:stats",
    "orders": "orders:stats",
}


@router.get(
    "/cache/info",
    response_model=CacheInfoResponse,
    responses=RATE_LIMITED_RESPONSES,
    dependencies=[Depends(verify_api_key), Depends(rate_limit("general"))],
)
async def cache_info(cache: CacheService = Depends(get_cache_service)) -> CacheInfoResponse:
    """Report store statistics and this process's cache counters."""

    return CacheInfoResponse(
        store_info=await cache.get_info(),
        cache_stats=cache.stats(),
    )


@router.delete(
    "/cache/flush",
    response_model=FlushResponse,
    responses=RATE_LIMITED_RESPONSES,
    dependencies=[Depends(verify_api_key), Depends(rate_limit("strict"))],
)
async def flush_cache(cache: CacheService = Depends(get_cache_service)) -> FlushResponse:
    """Wipe the whole store, including user sessions and rate limit counters.

    Raises:
        CacheUnavailableError: 503 when the store could not be flushed.
    """

    if not await cache.flush_all():
        raise CacheUnavailableError(
            code="cache_flush_failed",
            message="The cache could not be flushed; the store is unavailable",
        )

    logger.warning("cache.flushed_via_api")
    return FlushResponse(flushed=True, message="Cache flushed")


@router.get(
    "/stats",
    response_model=StatsResponse,
    responses=RATE_LIMITED_RESPONSES,
    dependencies=[Depends(rate_limit("general"))],
)
async def cached_stats(cache: CacheService = Depends(get_cache_service)) -> StatsResponse:
    """Serve resource statistics from cache only; never recomputes them."""

    sections = {}
    for name, key in STATS_KEYS.items():
        cached = await cache.get(key)
        sections[name] = cached if isinstance(cached, dict) else {"message": f"{name} statistics not cached"}

    return StatsResponse(
        **sections,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )

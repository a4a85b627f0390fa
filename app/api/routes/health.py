from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from app.adapters.kv_store.base import AbstractKeyValueStore
from app.core.dependencies import get_kv_store
from app.core.rate_limit import RATE_LIMITED_RESPONSES, rate_limit
from app.schemas.cache import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={**RATE_LIMITED_RESPONSES, 503: {"model": HealthResponse}},
    dependencies=[Depends(rate_limit("general"))],
)
async def health_check(
    response: Response,
    store: AbstractKeyValueStore = Depends(get_kv_store),
) -> HealthResponse:
    """Health check endpoint.

    Pings the key-value store. The API keeps serving when the store is down
    (cache misses, fail-open rate limits), so that case reports "degraded"
    with HTTP 503 rather than failing the probe outright.
    """

    store_ok = await store.ping()
    if not store_ok:
        response.status_code = 503

    return HealthResponse(
        status="healthy" if store_ok else "degraded",
        services={
            "api": "healthy",
            "store": "healthy" if store_ok else "unhealthy",
        },
    )

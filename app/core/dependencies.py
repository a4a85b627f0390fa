"""FastAPI dependency providers for lifespan-managed services."""

from __future__ import annotations

from fastapi import Request

from app.adapters.kv_store.base import AbstractKeyValueStore
from app.adapters.rate_limit.base import AbstractRateLimiter
from app.services.cache_service import CacheService


def get_kv_store(request: Request) -> AbstractKeyValueStore:
    return request.app.state.kv_store


def get_cache_service(request: Request) -> CacheService:
    return request.app.state.cache_service


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    return request.app.state.rate_limiter

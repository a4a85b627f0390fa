"""Lifecycle management for the application.

One key-value store connection is opened per process and shared by the cache
service and the rate limiter through ``app.state``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.kv_store.base import AbstractKeyValueStore
from app.adapters.kv_store.factory import create_kv_store
from app.adapters.rate_limit.fixed_window import StoreFixedWindowRateLimiter
from app.core.config import settings
from app.services.cache_service import CacheService

logger = logging.getLogger(__name__)


def attach_services(app: FastAPI, store: AbstractKeyValueStore) -> None:
    """Build the services over ``store`` and expose them on ``app.state``."""

    app.state.kv_store = store
    app.state.cache_service = CacheService(store, settings.cache)
    app.state.rate_limiter = StoreFixedWindowRateLimiter(
        store,
        atomic=settings.app.rate_limit_atomic,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store on startup and close it on shutdown.

    A store passed to ``create_app`` (tests, embedding) is used instead of
    the one selected by configuration.
    """

    store = getattr(app.state, "kv_store_override", None) or create_kv_store()
    await store.connect()
    attach_services(app, store)
    logger.info("app.started", extra={"app_env": settings.app_env, "store": type(store).__name__})

    try:
        yield
    finally:
        await store.close()
        logger.info("app.stopped")

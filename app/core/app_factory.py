from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability and separation of concerns compared to a monolithic main.
"""

from fastapi import FastAPI

from app.adapters.kv_store.base import AbstractKeyValueStore
from app.api.routes import cache_router, health_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.lifecycle import lifespan
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations


def create_app(kv_store: AbstractKeyValueStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        kv_store: Store to use instead of the one selected by configuration
            (tests inject an in-memory store here).

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admin Panel Cache API",
        description=(
            "Cache-aside storage and fixed-window rate limiting for the admin "
            "panel (users, products, orders), backed by Redis. Exposes health, "
            "cache inspection, flush and cached statistics endpoints."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )
    app.state.kv_store_override = kv_store

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(cache_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app

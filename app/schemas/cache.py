"""Pydantic schemas for health and cache maintenance responses."""

from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness plus key-value store reachability."""

    status: Literal["healthy", "degraded"] = Field(
        ..., description="'degraded' when a backing service does not answer."
    )
    services: Dict[str, Literal["healthy", "unhealthy"]] = Field(
        default_factory=dict,
        description="Per-service status (api, store).",
    )


class CacheInfoResponse(BaseModel):
    """Store statistics and process-local cache counters."""

    store_info: Dict[str, Any] | None = Field(
        default=None,
        description="Server statistics reported by the store (None when unreachable).",
    )
    cache_stats: Dict[str, int] = Field(
        default_factory=dict,
        description="Hit/miss/error counters of this process.",
    )


class FlushResponse(BaseModel):
    """Outcome of a full cache flush."""

    flushed: bool = Field(..., description="True when the store confirmed the flush.")
    message: str = Field(..., description="Human-readable outcome.")


class StatsResponse(BaseModel):
    """Resource statistics served from cache only."""

    users: Dict[str, Any] = Field(default_factory=dict)
    products: Dict[str, Any] = Field(default_factory=dict)
    orders: Dict[str, Any] = Field(default_factory=dict)
    generated_at: str = Field(..., description="ISO-8601 UTC timestamp of this response.")

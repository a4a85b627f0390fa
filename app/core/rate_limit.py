"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiter into the HTTP layer through named
profiles. Each profile is an independent instance of the same fixed-window
algorithm with its own window, budget and identifier derivation. Profiles
share counters only when their derived identifiers coincide.

Usage:
    @router.get("/products", dependencies=[Depends(rate_limit("search"))])
"""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Mapping

from fastapi import Request, Response

from app.adapters.rate_limit.base import RateLimitDecision
from app.core.config import settings
from app.core.dependencies import get_cache_service, get_rate_limiter
from app.core.errors import RateLimitExceededError, ValidationAppError

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Too many requests, please try again later."

# Declared on rate-limited routes so the 429 outcome appears in the OpenAPI schema
RATE_LIMITED_RESPONSES: dict[int | str, dict[str, Any]] = {
    429: {"description": "Rate limit exceeded"},
}


def client_ip(request: Request) -> str:
    """Best-effort client address.

    Order: first hop of X-Forwarded-For, X-Real-IP, socket peer, "unknown".
    """

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def current_user_id(request: Request) -> Any | None:
    """User id placed on ``request.state`` by an upstream auth layer, if any."""
    return getattr(request.state, "user_id", None)


def _auth_identifier(request: Request) -> str:
    return f"auth_limit:{client_ip(request)}"


def _user_identifier(request: Request) -> str:
    user_id = current_user_id(request)
    if user_id is not None:
        return f"user_limit:{user_id}"
    return f"ip_limit:{client_ip(request)}"


def _admin_identifier(request: Request) -> str:
    return f"admin_limit:{current_user_id(request) or 'anonymous'}"


@dataclass(frozen=True)
class RateLimitProfile:
    """Parameters of one rate limit class.

    Attributes:
        name: Profile name used in logs.
        window_seconds: Fixed window length.
        max_requests: Requests allowed per window.
        message: Detail returned with HTTP 429.
        key_func: Derives the identifier from the request (client IP if None).
        skip_successful_requests: Give the request back when the response is below 400.
        skip_failed_requests: Give the request back when the handler raises or the
            response status is 400 or above.
        adaptive: Scale ``max_requests`` down when the store reports many clients.
    """

    name: str
    window_seconds: int
    max_requests: int
    message: str = DEFAULT_MESSAGE
    key_func: Callable[[Request], str] | None = None
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False
    adaptive: bool = False

    def identifier(self, request: Request) -> str:
        if self.key_func is not None:
            return self.key_func(request)
        return client_ip(request)


PROFILES: dict[str, RateLimitProfile] = {
    "general": RateLimitProfile(
        name="general",
        window_seconds=15 * 60,
        max_requests=100,
    ),
    "strict": RateLimitProfile(
        name="strict",
        window_seconds=60 * 60,
        max_requests=50,
        message="Request quota reached, please try again in an hour.",
    ),
    "auth": RateLimitProfile(
        name="auth",
        window_seconds=15 * 60,
        max_requests=5,
        message="Too many login attempts, please try again in 15 minutes.",
        key_func=_auth_identifier,
    ),
    "create": RateLimitProfile(
        name="create",
        window_seconds=60,
        max_requests=10,
        message="Too many create operations, please slow down.",
        skip_failed_requests=True,
    ),
    "search": RateLimitProfile(
        name="search",
        window_seconds=60,
        max_requests=30,
        message="Too many search requests, please slow down.",
    ),
    "user_based": RateLimitProfile(
        name="user_based",
        window_seconds=15 * 60,
        max_requests=200,
        message="Too many requests for this user, please slow down.",
        key_func=_user_identifier,
    ),
    "admin": RateLimitProfile(
        name="admin",
        window_seconds=60,
        max_requests=50,
        message="Too many admin operations, please slow down.",
        key_func=_admin_identifier,
    ),
}


def custom_profile(
    identifier: str,
    limit: int,
    window_seconds: int,
    message: str | None = None,
) -> RateLimitProfile:
    """Build a one-off profile keyed by ``custom_<identifier>:<client ip>``.

    Raises:
        ValidationAppError: If limit or window_seconds is below 1.
    """

    if limit < 1 or window_seconds < 1:
        raise ValidationAppError(
            code="invalid_rate_limit",
            message="Rate limit and window must both be at least 1",
            details={"limit": limit, "context": {"window_seconds": window_seconds}},
        )

    return RateLimitProfile(
        name=f"custom_{identifier}",
        window_seconds=window_seconds,
        max_requests=limit,
        message=message or DEFAULT_MESSAGE,
        key_func=lambda request: f"custom_{identifier}:{client_ip(request)}",
    )


def adaptive_limit(base_limit: int, info: Mapping[str, Any] | None) -> int:
    """Reduce a limit while the store serves many clients.

    More than 100 connected clients halves the limit; more than 50 cuts it
    by a quarter. Missing or malformed info leaves the limit unchanged.
    """

    if not info:
        return base_limit

    try:
        connected = int(info.get("connected_clients", 0))
    except (TypeError, ValueError):
        return base_limit

    if connected > 100:
        multiplier = 0.5
    elif connected > 50:
        multiplier = 0.75
    else:
        return base_limit
    return max(1, int(base_limit * multiplier))


def _hash_identifier(identifier: str) -> str:
    """Hash the identifier for logging without exposing addresses or user ids."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def _iso_utc(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


def build_rate_limit_headers(
    decision: RateLimitDecision,
    *,
    standard: bool = True,
    legacy: bool = False,
) -> dict[str, str]:
    """Headers describing a decision.

    Args:
        decision: Outcome of the rate limit check.
        standard: Emit ``RateLimit-*`` with an ISO-8601 reset time.
        legacy: Emit ``X-RateLimit-*`` with the reset as epoch seconds.

    Retry-After is added to blocked decisions whenever any header set is on.
    """

    headers: dict[str, str] = {}
    remaining = str(max(0, decision.remaining))
    if standard:
        headers["RateLimit-Limit"] = str(decision.limit)
        headers["RateLimit-Remaining"] = remaining
        headers["RateLimit-Reset"] = _iso_utc(decision.reset_at_ms)
    if legacy:
        headers["X-RateLimit-Limit"] = str(decision.limit)
        headers["X-RateLimit-Remaining"] = remaining
        headers["X-RateLimit-Reset"] = str(math.ceil(decision.reset_at_ms / 1000))
    if not headers:
        return headers
    if decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def rate_limit(profile: str | RateLimitProfile) -> Callable[..., AsyncIterator[None]]:
    """Create a FastAPI dependency enforcing a rate limit profile.

    Args:
        profile: Preset name from ``PROFILES`` or a profile instance.

    Returns:
        Dependency that counts the request, raises RateLimitExceededError
        (HTTP 429) when the budget is exhausted, and gives the request back
        afterwards when the profile skips successful or failed requests.

    Raises:
        KeyError: If ``profile`` names an unknown preset.
    """

    resolved = PROFILES[profile] if isinstance(profile, str) else profile

    async def enforce_rate_limit(request: Request, response: Response) -> AsyncIterator[None]:
        if not settings.app.rate_limit_enabled:
            yield
            return

        limiter = get_rate_limiter(request)
        identifier = resolved.identifier(request)

        limit = resolved.max_requests
        if resolved.adaptive:
            limit = adaptive_limit(limit, await get_cache_service(request).get_info())

        decision = await limiter.check_rate_limit(identifier, limit, resolved.window_seconds)
        headers = build_rate_limit_headers(
            decision,
            standard=settings.app.rate_limit_include_headers,
            legacy=settings.app.rate_limit_legacy_headers,
        )

        if not decision.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "profile": resolved.name,
                    "identifier_hash": _hash_identifier(identifier),
                    "limit": decision.limit,
                    "window_s": resolved.window_seconds,
                    "retry_after_s": decision.retry_after_seconds,
                },
            )
            raise RateLimitExceededError(
                code="rate_limited",
                message=resolved.message,
                details={
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "retry_after": decision.retry_after_seconds or 0,
                },
                headers=headers or None,
            )

        response.headers.update(headers)

        try:
            yield
        except Exception:
            if resolved.skip_failed_requests:
                await limiter.undo(identifier)
            raise

        # Status set on the injected response; None means the route default (2xx)
        failed = (response.status_code or 200) >= 400
        if (failed and resolved.skip_failed_requests) or (
            not failed and resolved.skip_successful_requests
        ):
            await limiter.undo(identifier)

    return enforce_rate_limit

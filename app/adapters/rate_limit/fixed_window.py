"""Fixed-window rate limiter backed by the shared key-value store.

Notes:
- Shared across processes: every worker counts against the same key.
- Fail-open: when the store is unavailable the request is allowed.
- The default mode issues several store commands per check (read, then
  conditional increment). Concurrent requests can all read ``count < limit``
  and all increment, over-admitting by up to the number of racing requests.
  ``atomic=True`` evaluates the whole decision in one store round trip.
"""

from __future__ import annotations

import logging
import math
import re
import time
from typing import Callable

from app.adapters.kv_store.base import AbstractKeyValueStore
from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision
from app.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "rate_limit:"

_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_COUNTER_RE = re.compile(r"^\d+$")


def sanitize_identifier(identifier: object) -> str:
    """Replace characters outside ``[A-Za-z0-9._-]`` with underscores.

    Distinct identifiers can collapse to the same key (``a:b`` and ``a/b``);
    they then share a window.
    """

    return _UNSAFE_IDENTIFIER_CHARS.sub("_", str(identifier))


def rate_limit_key(identifier: object) -> str:
    """Build the counter key for an identifier."""
    return f"{RATE_LIMIT_KEY_PREFIX}{sanitize_identifier(identifier)}"


class StoreFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests per identifier in store-expired windows.

    A window starts with the first request from an identifier and ends when
    the counter key expires; the next request after that opens a new one.
    """

    def __init__(
        self,
        store: AbstractKeyValueStore,
        *,
        atomic: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared key-value store holding the counters.
            atomic: Use the single round trip check-and-increment.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._atomic = atomic
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _allowed(self, *, limit: int, remaining: int, ttl_seconds: int) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=limit,
            remaining=max(0, remaining),
            reset_at_ms=self._now_ms() + ttl_seconds * 1000,
        )

    def _blocked(self, *, limit: int, ttl_seconds: int) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at_ms=self._now_ms() + ttl_seconds * 1000,
            retry_after_seconds=max(0, int(math.ceil(ttl_seconds))),
        )

    async def check_rate_limit(
        self,
        identifier: str,
        limit: int,
        window_seconds: int,
    ) -> RateLimitDecision:
        """Count one request and decide whether it may proceed.

        Raises:
            ValueError: If limit or window_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        key = rate_limit_key(identifier)

        try:
            if self._atomic:
                decision = await self._check_atomic(key, limit, window_seconds)
            else:
                decision = await self._check_stepwise(key, limit, window_seconds)
        except CacheUnavailableError as exc:
            logger.warning(
                "rate_limit.store_unavailable",
                extra={"rate_key": key[:64], "error_code": exc.code, "fail_open": True},
            )
            return self._allowed(limit=limit, remaining=limit, ttl_seconds=window_seconds)

        if decision.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={"rate_key": key[:64], "limit": limit, "remaining": decision.remaining},
            )
        else:
            logger.info(
                "rate_limit.blocked",
                extra={
                    "rate_key": key[:64],
                    "limit": limit,
                    "retry_after_s": decision.retry_after_seconds,
                },
            )
        return decision

    async def _check_stepwise(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        current = await self._store.get(key)
        if current is None:
            await self._store.set(key, "1", window_seconds)
            return self._allowed(limit=limit, remaining=limit - 1, ttl_seconds=window_seconds)

        if not _COUNTER_RE.match(current):
            logger.warning("rate_limit.corrupt_counter", extra={"rate_key": key[:64]})
            await self._store.set(key, "1", window_seconds)
            return self._allowed(limit=limit, remaining=limit - 1, ttl_seconds=window_seconds)

        if int(current) >= limit:
            return self._blocked(limit=limit, ttl_seconds=await self._window_ttl(key, window_seconds))

        count = await self._store.increment(key)
        ttl_seconds = await self._window_ttl(key, window_seconds)
        return self._allowed(limit=limit, remaining=limit - count, ttl_seconds=ttl_seconds)

    async def _check_atomic(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        count, ttl_seconds = await self._store.increment_window(key, window_seconds)
        if count > limit:
            return self._blocked(limit=limit, ttl_seconds=ttl_seconds)
        return self._allowed(limit=limit, remaining=limit - count, ttl_seconds=ttl_seconds)

    async def _window_ttl(self, key: str, window_seconds: int) -> int:
        """Remaining TTL of the window, restoring an expiry if one is missing.

        A counter without expiry (written by another process, or expired
        between our read and increment) would otherwise never reset.
        """
        ttl_seconds = await self._store.ttl(key)
        if ttl_seconds < 0:
            await self._store.expire(key, window_seconds)
            return window_seconds
        return ttl_seconds

    async def undo(self, identifier: str) -> None:
        """Decrement the counter, used when a profile skips counting a response.

        A missing counter is left alone so no expiry-less key is created.
        Store failures are logged and ignored.
        """
        key = rate_limit_key(identifier)
        try:
            if await self._store.exists(key):
                await self._store.decrement(key)
        except CacheUnavailableError as exc:
            logger.warning(
                "rate_limit.undo_failed",
                extra={"rate_key": key[:64], "error_code": exc.code},
            )

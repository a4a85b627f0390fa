"""Cache-aside service over the shared key-value store.

Read path: try the cache, on a miss compute from the source of truth and
populate. Write path: mutate the source of truth, then invalidate the
resource namespace (``delete_pattern("products:*")``) instead of tracking
which entries depend on which record.

Keys are grouped by convention into namespaces (``product:42``,
``products:list:<filters>``, ``products:stats``). The service does not
enforce the convention; pattern invalidation only works when callers follow
it.

Every store failure degrades silently: reads become misses, writes return
False/0. Nothing here raises to the request path.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from app.adapters.kv_store.base import NO_TTL, AbstractKeyValueStore
from app.core.config import CacheSettings
from app.core.errors import CacheUnavailableError
from app.utils.serialization import DecodedMember, decode, decode_member, encode

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:user:"

# Sentinel meaning "use the configured default TTL"; None or 0 means no expiry
DEFAULT_TTL: Any = object()


def session_key(user_id: Any) -> str:
    """Build the store key holding a user's session."""
    return f"{SESSION_KEY_PREFIX}{user_id}"


class CacheService:
    """JSON cache with TTL, container helpers, sessions and bulk invalidation.

    Attributes:
        default_ttl: TTL applied when callers do not pass one (seconds).
        session_ttl: TTL applied to user sessions (seconds).
    """

    def __init__(
        self,
        store: AbstractKeyValueStore,
        cache_settings: CacheSettings | None = None,
    ) -> None:
        cfg = cache_settings or CacheSettings()
        self._store = store
        self.default_ttl = cfg.default_ttl_seconds
        self.session_ttl = cfg.session_ttl_seconds
        self._hits = 0
        self._misses = 0
        self._errors = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"CacheService(store={self._store!r}, default_ttl={self.default_ttl}, "
            f"hits={self._hits}, misses={self._misses}, errors={self._errors})"
        )

    @property
    def store(self) -> AbstractKeyValueStore:
        return self._store

    def _resolve_ttl(self, ttl: Any) -> int | None:
        if ttl is DEFAULT_TTL:
            return self.default_ttl
        return ttl or None

    def _unavailable(self, operation: str, key: str, exc: CacheUnavailableError) -> None:
        self._errors += 1
        logger.warning(
            "cache.unavailable",
            extra={
                "operation": operation,
                "cache_key": key[:64],
                "error_code": exc.code,
            },
        )

    # ------------------------------------------------------------------
    # Plain values
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss, decode failure or outage.

        Args:
            key: Cache key.

        Returns:
            Deserialized value or None.
        """

        try:
            raw = await self._store.get(key)
        except CacheUnavailableError as exc:
            self._unavailable("get", key, exc)
            return None

        if raw is None:
            self._misses += 1
            logger.debug("cache.miss", extra={"cache_key": key[:64], "reason": "not_found"})
            return None

        try:
            value = decode(raw)
        except ValueError:
            self._misses += 1
            logger.warning("cache.miss", extra={"cache_key": key[:64], "reason": "undecodable"})
            return None

        self._hits += 1
        logger.debug("cache.hit", extra={"cache_key": key[:64]})
        return value

    async def set(self, key: str, value: Any, ttl: int | None = DEFAULT_TTL) -> bool:
        """Serialize and store a value.

        Args:
            key: Cache key.
            value: JSON-serializable value.
            ttl: Seconds until expiry. Defaults to ``default_ttl``; pass
                None or 0 to keep the value until deleted or flushed.

        Returns:
            True when the value was stored.
        """

        ttl_seconds = self._resolve_ttl(ttl)
        try:
            serialized = encode(value)
        except (TypeError, ValueError) as exc:
            logger.error(
                "cache.serialize_failed",
                extra={"cache_key": key[:64], "error_type": type(exc).__name__},
            )
            return False

        try:
            await self._store.set(key, serialized, ttl_seconds)
        except CacheUnavailableError as exc:
            self._unavailable("set", key, exc)
            return False

        logger.debug("cache.set", extra={"cache_key": key[:64], "ttl_s": ttl_seconds})
        return True

    async def get_or_set(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int | None = DEFAULT_TTL,
    ) -> Any:
        """Cache-aside read: return the cached value or load and populate it.

        The loader result is returned even when it cannot be cached. A None
        result is not cached so the next call retries the loader.
        """

        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await loader()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns False when it did not exist or on outage."""

        try:
            deleted = await self._store.delete(key) > 0
        except CacheUnavailableError as exc:
            self._unavailable("delete", key, exc)
            return False

        logger.debug("cache.delete", extra={"cache_key": key[:64], "deleted": deleted})
        return deleted

    async def delete_pattern(self, pattern: str) -> int:
        """Invalidate every key matching a glob pattern.

        This is the invalidation primitive callers use after a write, e.g.
        ``delete_pattern("orders:*")``. Best effort: keys created while the
        scan runs may or may not be removed.

        Returns:
            Number of keys deleted (0 on outage or no match).
        """

        try:
            deleted = await self._store.delete_pattern(pattern)
        except CacheUnavailableError as exc:
            self._unavailable("delete_pattern", pattern, exc)
            return 0

        logger.info("cache.invalidate", extra={"pattern": pattern, "deleted": deleted})
        return deleted

    async def exists(self, key: str) -> bool:
        try:
            return await self._store.exists(key)
        except CacheUnavailableError as exc:
            self._unavailable("exists", key, exc)
            return False

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return await self._store.expire(key, ttl)
        except CacheUnavailableError as exc:
            self._unavailable("expire", key, exc)
            return False

    async def ttl(self, key: str) -> int:
        """Remaining seconds; -1 for no TTL, missing key or outage alike."""

        try:
            return await self._store.ttl(key)
        except CacheUnavailableError as exc:
            self._unavailable("ttl", key, exc)
            return NO_TTL

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    async def hset(self, key: str, field: str, value: Any, ttl: int | None = DEFAULT_TTL) -> bool:
        """Store a JSON-encoded hash field and (re)apply the TTL to the hash."""

        ttl_seconds = self._resolve_ttl(ttl)
        try:
            serialized = encode(value)
        except (TypeError, ValueError) as exc:
            logger.error(
                "cache.serialize_failed",
                extra={"cache_key": key[:64], "error_type": type(exc).__name__},
            )
            return False

        try:
            await self._store.hset(key, field, serialized)
            if ttl_seconds:
                await self._store.expire(key, ttl_seconds)
        except CacheUnavailableError as exc:
            self._unavailable("hset", key, exc)
            return False
        return True

    async def hget(self, key: str, field: str) -> DecodedMember | None:
        try:
            raw = await self._store.hget(key, field)
        except CacheUnavailableError as exc:
            self._unavailable("hget", key, exc)
            return None
        return decode_member(raw) if raw is not None else None

    async def hgetall(self, key: str) -> dict[str, DecodedMember]:
        try:
            fields = await self._store.hgetall(key)
        except CacheUnavailableError as exc:
            self._unavailable("hgetall", key, exc)
            return {}
        return {field: decode_member(raw) for field, raw in fields.items()}

    async def hdel(self, key: str, field: str) -> bool:
        try:
            return await self._store.hdel(key, field) > 0
        except CacheUnavailableError as exc:
            self._unavailable("hdel", key, exc)
            return False

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def lpush(self, key: str, value: Any) -> int:
        """Prepend a JSON-encoded item. Returns the new length, 0 on failure."""

        try:
            return await self._store.lpush(key, encode(value))
        except (TypeError, ValueError):
            logger.error("cache.serialize_failed", extra={"cache_key": key[:64]})
            return 0
        except CacheUnavailableError as exc:
            self._unavailable("lpush", key, exc)
            return 0

    async def rpush(self, key: str, value: Any) -> int:
        """Append a JSON-encoded item. Returns the new length, 0 on failure."""

        try:
            return await self._store.rpush(key, encode(value))
        except (TypeError, ValueError):
            logger.error("cache.serialize_failed", extra={"cache_key": key[:64]})
            return 0
        except CacheUnavailableError as exc:
            self._unavailable("rpush", key, exc)
            return 0

    async def lpop(self, key: str) -> DecodedMember | None:
        try:
            raw = await self._store.lpop(key)
        except CacheUnavailableError as exc:
            self._unavailable("lpop", key, exc)
            return None
        return decode_member(raw) if raw is not None else None

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> list[DecodedMember]:
        try:
            items = await self._store.lrange(key, start, stop)
        except CacheUnavailableError as exc:
            self._unavailable("lrange", key, exc)
            return []
        return [decode_member(raw) for raw in items]

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    async def sadd(self, key: str, member: Any) -> bool:
        """Add a JSON-encoded member. Returns True when it was not present."""

        try:
            return await self._store.sadd(key, encode(member)) > 0
        except (TypeError, ValueError):
            logger.error("cache.serialize_failed", extra={"cache_key": key[:64]})
            return False
        except CacheUnavailableError as exc:
            self._unavailable("sadd", key, exc)
            return False

    async def smembers(self, key: str) -> list[DecodedMember]:
        try:
            members = await self._store.smembers(key)
        except CacheUnavailableError as exc:
            self._unavailable("smembers", key, exc)
            return []
        return [decode_member(raw) for raw in members]

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    async def incr(self, key: str, amount: int = 1) -> int:
        """Atomically increment a counter. Returns the new value, 0 on failure."""

        try:
            return await self._store.increment(key, amount)
        except CacheUnavailableError as exc:
            self._unavailable("incr", key, exc)
            return 0

    async def decr(self, key: str, amount: int = 1) -> int:
        """Atomically decrement a counter. Returns the new value, 0 on failure."""

        try:
            return await self._store.decrement(key, amount)
        except CacheUnavailableError as exc:
            self._unavailable("decr", key, exc)
            return 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def set_user_session(self, user_id: Any, data: Any, ttl: int | None = None) -> bool:
        """Store session metadata for a user (24h unless told otherwise).

        ``ttl=0`` keeps the session until it is deleted or flushed.
        Sessions live in the same keyspace as the cache: ``flush_all``
        removes them too.
        """

        return await self.set(session_key(user_id), data, self.session_ttl if ttl is None else ttl)

    async def get_user_session(self, user_id: Any) -> Any | None:
        return await self.get(session_key(user_id))

    async def delete_user_session(self, user_id: Any) -> bool:
        return await self.delete(session_key(user_id))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def flush_all(self) -> bool:
        """Wipe the whole store: cache entries, sessions and rate limit counters.

        Irreversible; meant for maintenance and reseed flows only.
        """

        try:
            await self._store.flush_all()
        except CacheUnavailableError as exc:
            self._unavailable("flush_all", "*", exc)
            return False
        return True

    async def get_info(self) -> dict[str, Any] | None:
        try:
            return await self._store.info()
        except CacheUnavailableError as exc:
            self._unavailable("info", "", exc)
            return None

    def stats(self) -> dict[str, int]:
        """Return process-local hit/miss/error counters."""

        return {
            "default_ttl_seconds": self.default_ttl,
            "hits": self._hits,
            "misses": self._misses,
            "errors": self._errors,
        }

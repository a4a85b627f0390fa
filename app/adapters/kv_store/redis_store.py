"""Redis-backed key-value store.

Notes:
- Uses ``redis.asyncio`` so every command is a suspension point for the
  calling task, never a blocking call.
- All client errors are translated into ``CacheUnavailableError``.
- ``delete_pattern`` scans then deletes; it is not atomic.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Iterator

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.adapters.kv_store.base import NO_TTL, AbstractKeyValueStore
from app.core.config import RedisSettings
from app.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)


# Keys are deleted in batches so one DEL never carries an unbounded argument list
_DELETE_BATCH_SIZE = 500

# Fixed-window hit in one round trip. A value that is not a non-negative
# integer is treated as corrupt and replaced by a fresh window.
_INCREMENT_WINDOW_SCRIPT = """
local window = tonumber(ARGV[1])
local current = redis.call('GET', KEYS[1])
if current == false or not string.match(current, '^%d+$') then
  redis.call('SET', KEYS[1], '1', 'EX', window)
  return {1, window}
end
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('TTL', KEYS[1])
if ttl < 0 then
  redis.call('EXPIRE', KEYS[1], window)
  ttl = window
end
return {count, ttl}
"""


class RedisKeyValueStore(AbstractKeyValueStore):
    """Key-value store backed by a Redis server.

    The client is created in :meth:`connect` from :class:`RedisSettings`, or
    injected directly (tests, shared pools).
    """

    def __init__(
        self,
        redis_settings: RedisSettings | None = None,
        *,
        client: redis.Redis | None = None,
    ) -> None:
        self._settings = redis_settings or RedisSettings()
        self._client = client
        self._window_script: Any = None

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"RedisKeyValueStore(connected={self._client is not None})"

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise CacheUnavailableError(
                code="cache_not_connected",
                message="Key-value store connection has not been opened",
            )
        return self._client

    @contextmanager
    def _translate_errors(self, operation: str, key: str | None = None) -> Iterator[None]:
        """Re-raise client failures as CacheUnavailableError.

        Args:
            operation: Command name used in logs and error details.
            key: Key involved, if any (truncated in logs).
        """

        try:
            yield
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "store.command_failed",
                extra={
                    "operation": operation,
                    "cache_key": (key or "")[:32],
                    "error_type": type(exc).__name__,
                },
            )
            raise CacheUnavailableError(
                code="cache_unavailable",
                message=f"Key-value store unavailable during {operation}",
                details={"operation": operation},
            ) from exc

    async def connect(self) -> None:
        """Create the client and check that the server answers.

        A failed ping is logged but not raised: the client reconnects lazily,
        so the process can start while the store is still coming up.
        """

        if self._client is None:
            self._client = redis.from_url(
                self._settings.url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self._settings.socket_timeout_seconds,
                socket_connect_timeout=self._settings.connect_timeout_seconds,
            )

        if await self.ping():
            logger.info("store.connected", extra={"backend": "redis"})
        else:
            logger.warning("store.unreachable", extra={"backend": "redis"})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("store.closed", extra={"backend": "redis"})

    async def ping(self) -> bool:
        try:
            with self._translate_errors("ping"):
                return bool(await self.client.ping())
        except CacheUnavailableError:
            return False

    async def get(self, key: str) -> str | None:
        with self._translate_errors("get", key):
            return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._translate_errors("set", key):
            if ttl_seconds:
                await self.client.setex(key, ttl_seconds, value)
            else:
                await self.client.set(key, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._translate_errors("delete", keys[0]):
            return int(await self.client.delete(*keys))

    async def delete_pattern(self, pattern: str) -> int:
        with self._translate_errors("delete_pattern", pattern):
            keys = [key async for key in self.client.scan_iter(match=pattern, count=_DELETE_BATCH_SIZE)]
            deleted = 0
            for start in range(0, len(keys), _DELETE_BATCH_SIZE):
                deleted += int(await self.client.delete(*keys[start:start + _DELETE_BATCH_SIZE]))
            return deleted

    async def exists(self, key: str) -> bool:
        with self._translate_errors("exists", key):
            return int(await self.client.exists(key)) > 0

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._translate_errors("expire", key):
            return bool(await self.client.expire(key, ttl_seconds))

    async def ttl(self, key: str) -> int:
        with self._translate_errors("ttl", key):
            remaining = int(await self.client.ttl(key))
        # Redis answers -2 for a missing key; callers treat it like "no TTL"
        return remaining if remaining >= 0 else NO_TTL

    async def increment(self, key: str, amount: int = 1) -> int:
        with self._translate_errors("incrby", key):
            return int(await self.client.incrby(key, amount))

    async def decrement(self, key: str, amount: int = 1) -> int:
        with self._translate_errors("decrby", key):
            return int(await self.client.decrby(key, amount))

    async def increment_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        with self._translate_errors("increment_window", key):
            if self._window_script is None:
                self._window_script = self.client.register_script(_INCREMENT_WINDOW_SCRIPT)
            count, ttl = await self._window_script(keys=[key], args=[window_seconds])
            return int(count), int(ttl)

    async def hset(self, key: str, field: str, value: str) -> int:
        with self._translate_errors("hset", key):
            return int(await self.client.hset(key, field, value))

    async def hget(self, key: str, field: str) -> str | None:
        with self._translate_errors("hget", key):
            return await self.client.hget(key, field)

    async def hgetall(self, key: str) -> dict[str, str]:
        with self._translate_errors("hgetall", key):
            return dict(await self.client.hgetall(key))

    async def hdel(self, key: str, field: str) -> int:
        with self._translate_errors("hdel", key):
            return int(await self.client.hdel(key, field))

    async def lpush(self, key: str, value: str) -> int:
        with self._translate_errors("lpush", key):
            return int(await self.client.lpush(key, value))

    async def rpush(self, key: str, value: str) -> int:
        with self._translate_errors("rpush", key):
            return int(await self.client.rpush(key, value))

    async def lpop(self, key: str) -> str | None:
        with self._translate_errors("lpop", key):
            return await self.client.lpop(key)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        with self._translate_errors("lrange", key):
            return list(await self.client.lrange(key, start, stop))

    async def sadd(self, key: str, member: str) -> int:
        with self._translate_errors("sadd", key):
            return int(await self.client.sadd(key, member))

    async def smembers(self, key: str) -> set[str]:
        with self._translate_errors("smembers", key):
            return set(await self.client.smembers(key))

    async def info(self) -> dict[str, Any]:
        with self._translate_errors("info"):
            return dict(await self.client.info())

    async def flush_all(self) -> None:
        with self._translate_errors("flushall"):
            await self.client.flushall()
        logger.warning("store.flushed", extra={"backend": "redis"})

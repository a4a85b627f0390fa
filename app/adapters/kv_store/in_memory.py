"""In-process key-value store.

Notes:
- Per-process only: running multiple workers gives each its own keyspace,
  so rate limits multiply and invalidation does not cross processes.
- No method awaits internally, so each call is atomic with respect to other
  asyncio tasks, like a single Redis command.
- Expiry is evaluated lazily against an injectable clock.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Callable

from app.adapters.kv_store.base import NO_TTL, AbstractKeyValueStore
from app.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)

_INTEGER_RE = re.compile(r"^-?\d+$")
_COUNTER_RE = re.compile(r"^\d+$")


@dataclass
class _Entry:
    value: Any
    expires_at: float | None = None


def _wrong_type(operation: str, key: str) -> CacheUnavailableError:
    return CacheUnavailableError(
        code="cache_wrong_type",
        message=f"Operation {operation} against a key holding the wrong kind of value",
        details={"operation": operation, "key": key[:32]},
    )


class InMemoryKeyValueStore(AbstractKeyValueStore):
    """Dictionary-backed store with TTL support.

    Used when Redis is disabled and as the deterministic store in tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, _Entry] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryKeyValueStore(size={len(self._data)})"

    def _live_entry(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _typed_entry(self, operation: str, key: str, kind: type, create: bool) -> _Entry | None:
        entry = self._live_entry(key)
        if entry is None:
            if not create:
                return None
            entry = _Entry(value=kind())
            self._data[key] = entry
        if not isinstance(entry.value, kind):
            raise _wrong_type(operation, key)
        return entry

    def _live_keys(self) -> list[str]:
        return [key for key in list(self._data) if self._live_entry(key) is not None]

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        entry = self._typed_entry("get", key, str, create=False)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = _Entry(value=str(value), expires_at=expires_at)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live_entry(key) is not None:
                del self._data[key]
                deleted += 1
        return deleted

    async def delete_pattern(self, pattern: str) -> int:
        matched = [key for key in self._live_keys() if fnmatchcase(key, pattern)]
        return await self.delete(*matched)

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        entry = self._live_entry(key)
        if entry is None:
            return False
        entry.expires_at = self._clock() + ttl_seconds
        return True

    async def ttl(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None or entry.expires_at is None:
            return NO_TTL
        return max(0, int(round(entry.expires_at - self._clock())))

    async def increment(self, key: str, amount: int = 1) -> int:
        entry = self._typed_entry("incrby", key, str, create=False)
        if entry is None:
            self._data[key] = entry = _Entry(value="0")
        if not _INTEGER_RE.match(entry.value):
            raise _wrong_type("incrby", key)
        entry.value = str(int(entry.value) + amount)
        return int(entry.value)

    async def decrement(self, key: str, amount: int = 1) -> int:
        return await self.increment(key, -amount)

    async def increment_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        entry = self._typed_entry("increment_window", key, str, create=False)
        if entry is None or not _COUNTER_RE.match(entry.value):
            await self.set(key, "1", window_seconds)
            return 1, window_seconds

        count = await self.increment(key)
        if entry.expires_at is None:
            entry.expires_at = self._clock() + window_seconds
        return count, await self.ttl(key)

    async def hset(self, key: str, field: str, value: str) -> int:
        entry = self._typed_entry("hset", key, dict, create=True)
        added = 0 if field in entry.value else 1
        entry.value[field] = value
        return added

    async def hget(self, key: str, field: str) -> str | None:
        entry = self._typed_entry("hget", key, dict, create=False)
        return entry.value.get(field) if entry else None

    async def hgetall(self, key: str) -> dict[str, str]:
        entry = self._typed_entry("hgetall", key, dict, create=False)
        return dict(entry.value) if entry else {}

    async def hdel(self, key: str, field: str) -> int:
        entry = self._typed_entry("hdel", key, dict, create=False)
        if entry is None or field not in entry.value:
            return 0
        del entry.value[field]
        if not entry.value:
            del self._data[key]
        return 1

    async def lpush(self, key: str, value: str) -> int:
        entry = self._typed_entry("lpush", key, list, create=True)
        entry.value.insert(0, value)
        return len(entry.value)

    async def rpush(self, key: str, value: str) -> int:
        entry = self._typed_entry("rpush", key, list, create=True)
        entry.value.append(value)
        return len(entry.value)

    async def lpop(self, key: str) -> str | None:
        entry = self._typed_entry("lpop", key, list, create=False)
        if entry is None:
            return None
        value = entry.value.pop(0)
        if not entry.value:
            del self._data[key]
        return value

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        entry = self._typed_entry("lrange", key, list, create=False)
        if entry is None:
            return []
        items = entry.value
        # Redis semantics: stop is inclusive, -1 is the last element
        end = len(items) if stop == -1 else (stop + 1 if stop >= 0 else len(items) + stop + 1)
        return list(items[start:end])

    async def sadd(self, key: str, member: str) -> int:
        entry = self._typed_entry("sadd", key, set, create=True)
        if member in entry.value:
            return 0
        entry.value.add(member)
        return 1

    async def smembers(self, key: str) -> set[str]:
        entry = self._typed_entry("smembers", key, set, create=False)
        return set(entry.value) if entry else set()

    async def info(self) -> dict[str, Any]:
        return {
            "backend": "memory",
            "connected_clients": 1,
            "keys": len(self._live_keys()),
        }

    async def flush_all(self) -> None:
        self._data.clear()
        logger.warning("store.flushed", extra={"backend": "memory"})

"""Key-value store interfaces.

Services depend on this abstraction (not on a concrete client) so the Redis
backend can be swapped for the in-memory one in development and tests.

Implementations must translate every transport or protocol failure into
:class:`app.core.errors.CacheUnavailableError`; callers never see
client-library exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

# Value returned by ttl() for both "no expiry" and "missing key"
NO_TTL = -1


class AbstractKeyValueStore(ABC):
    """Interface for the shared key-value store.

    Values are stored as strings. Each method maps to one store command
    (except ``delete_pattern``) and is atomic on its own; sequences of calls
    are not.
    """

    async def connect(self) -> None:
        """Open the underlying connection (no-op by default)."""

    async def close(self) -> None:
        """Release the underlying connection (no-op by default)."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the raw value stored under key, or None when absent/expired."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store value; a truthy ``ttl_seconds`` registers automatic expiry.

        Args:
            key: Store key.
            value: Serialized value.
            ttl_seconds: Expiry in seconds. None or 0 stores the value
                without expiry.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""
        raise NotImplementedError

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (e.g. ``orders:*``).

        Matching and deletion are separate steps: keys written in between are
        neither guaranteed to be caught nor guaranteed to survive.

        Returns:
            Number of keys deleted.
        """
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set a TTL on an existing key. Returns False when the key is missing."""
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Return remaining seconds, or ``NO_TTL`` for no expiry and missing keys."""
        raise NotImplementedError

    @abstractmethod
    async def increment(self, key: str, amount: int = 1) -> int:
        """Atomically add ``amount``; a missing key counts as zero."""
        raise NotImplementedError

    @abstractmethod
    async def decrement(self, key: str, amount: int = 1) -> int:
        """Atomically subtract ``amount``; a missing key counts as zero."""
        raise NotImplementedError

    @abstractmethod
    async def increment_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one hit in a fixed window in a single atomic step.

        Creates the counter with a TTL of ``window_seconds`` when it does not
        exist. A counter holding a non-integer value is reset to 1 with a
        fresh TTL.

        Returns:
            Tuple of (count after increment, remaining TTL in seconds).
        """
        raise NotImplementedError

    @abstractmethod
    async def hset(self, key: str, field: str, value: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def hget(self, key: str, field: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def hgetall(self, key: str) -> dict[str, str]:
        raise NotImplementedError

    @abstractmethod
    async def hdel(self, key: str, field: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def lpush(self, key: str, value: str) -> int:
        """Prepend value; returns the list length."""
        raise NotImplementedError

    @abstractmethod
    async def rpush(self, key: str, value: str) -> int:
        """Append value; returns the list length."""
        raise NotImplementedError

    @abstractmethod
    async def lpop(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Return list items between start and stop (inclusive, negatives allowed)."""
        raise NotImplementedError

    @abstractmethod
    async def sadd(self, key: str, member: str) -> int:
        """Add member; returns 1 when it was not already present."""
        raise NotImplementedError

    @abstractmethod
    async def smembers(self, key: str) -> set[str]:
        raise NotImplementedError

    @abstractmethod
    async def info(self) -> dict[str, Any]:
        """Return server statistics (Redis INFO fields)."""
        raise NotImplementedError

    @abstractmethod
    async def flush_all(self) -> None:
        """Remove every key, sessions and rate limit counters included."""
        raise NotImplementedError

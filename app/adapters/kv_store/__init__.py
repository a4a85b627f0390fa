"""Key-value store adapters.

Redis serves production; the in-memory store serves local development and
tests. Both sit behind the same abstract interface so services never touch
a client library directly.
"""

from app.adapters.kv_store.base import NO_TTL, AbstractKeyValueStore
from app.adapters.kv_store.factory import create_kv_store
from app.adapters.kv_store.in_memory import InMemoryKeyValueStore
from app.adapters.kv_store.redis_store import RedisKeyValueStore

__all__ = [
    "NO_TTL",
    "AbstractKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "create_kv_store",
]

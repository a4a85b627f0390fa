"""Unit tests for the cache-aside service."""

from unittest.mock import AsyncMock

import pytest

from app.adapters.kv_store.in_memory import InMemoryKeyValueStore
from app.core.config import CacheSettings
from app.core.errors import CacheUnavailableError
from app.services.cache_service import CacheService, session_key
from app.utils.serialization import Parsed, Raw


def _failing_store() -> AsyncMock:
    """Store double whose every command reports an outage."""

    error = CacheUnavailableError(code="cache_unavailable", message="down")
    store = AsyncMock(spec=InMemoryKeyValueStore)
    for name in (
        "get", "set", "delete", "delete_pattern", "exists", "expire", "ttl",
        "increment", "decrement", "hset", "hget", "hgetall", "lpush",
        "lrange", "sadd", "smembers", "flush_all", "info",
    ):
        getattr(store, name).side_effect = error
    return store


@pytest.mark.asyncio
async def test_set_then_get_returns_structurally_equal_value(cache) -> None:
    product = {"id": 42, "name": "Café", "tags": ["a", "b"], "price": 9.5, "active": True}

    assert await cache.set("product:42", product) is True
    assert await cache.get("product:42") == product


@pytest.mark.asyncio
async def test_default_ttl_applies_and_entry_expires(store, clock) -> None:
    cache = CacheService(store, CacheSettings(default_ttl_seconds=30))

    await cache.set("product:42", {"id": 42})
    assert await cache.ttl("product:42") == 30

    clock.return_value = 1_030.0
    assert await cache.get("product:42") is None


@pytest.mark.asyncio
async def test_ttl_none_keeps_value_until_deleted(cache, clock) -> None:
    await cache.set("settings", {"theme": "dark"}, ttl=None)

    clock.return_value = 10_000_000.0
    assert await cache.get("settings") == {"theme": "dark"}
    assert await cache.ttl("settings") == -1


@pytest.mark.asyncio
async def test_product_update_invalidates_namespace(cache) -> None:
    await cache.set("product:42", {"id": 42})
    await cache.set("products:list:page=1", [{"id": 42}])
    await cache.set("products:stats", {"count": 1})

    # Write path: update the record, then drop the list and stats views
    await cache.delete("product:42")
    deleted = await cache.delete_pattern("products:*")

    assert deleted == 2
    assert await cache.get("product:42") is None
    assert await cache.get("products:list:page=1") is None
    assert await cache.get("products:stats") is None


@pytest.mark.asyncio
async def test_delete_is_idempotent(cache) -> None:
    await cache.set("k", 1)

    assert await cache.delete("k") is True
    assert await cache.delete("k") is False


@pytest.mark.asyncio
async def test_undecodable_value_is_a_miss(store, cache) -> None:
    await store.set("legacy", "not json")

    assert await cache.get("legacy") is None
    assert cache.stats()["misses"] == 1


@pytest.mark.asyncio
async def test_unserializable_value_is_not_stored(cache) -> None:
    assert await cache.set("k", {1, 2}) is False
    assert await cache.exists("k") is False


@pytest.mark.asyncio
async def test_get_or_set_loads_once(cache) -> None:
    loader = AsyncMock(return_value={"count": 3})

    assert await cache.get_or_set("users:stats", loader) == {"count": 3}
    assert await cache.get_or_set("users:stats", loader) == {"count": 3}
    loader.assert_awaited_once()


@pytest.mark.asyncio
async def test_get_or_set_does_not_cache_none(cache) -> None:
    loader = AsyncMock(return_value=None)

    assert await cache.get_or_set("user:404", loader) is None
    assert await cache.get_or_set("user:404", loader) is None
    assert loader.await_count == 2


@pytest.mark.asyncio
async def test_container_members_are_tagged(store, cache) -> None:
    await cache.hset("user:1", "profile", {"name": "Ana"})
    await store.hset("user:1", "legacy", "plain text")

    assert await cache.hget("user:1", "profile") == Parsed({"name": "Ana"})
    assert await cache.hgetall("user:1") == {
        "profile": Parsed({"name": "Ana"}),
        "legacy": Raw("plain text"),
    }
    assert await cache.ttl("user:1") == cache.default_ttl


@pytest.mark.asyncio
async def test_list_and_set_helpers(cache) -> None:
    await cache.rpush("recent", {"id": 1})
    await cache.lpush("recent", {"id": 0})

    assert await cache.lrange("recent") == [Parsed({"id": 0}), Parsed({"id": 1})]
    assert await cache.lpop("recent") == Parsed({"id": 0})

    assert await cache.sadd("roles", "admin") is True
    assert await cache.sadd("roles", "admin") is False
    assert await cache.smembers("roles") == [Parsed("admin")]


@pytest.mark.asyncio
async def test_counters(cache) -> None:
    assert await cache.incr("visits") == 1
    assert await cache.incr("visits", 9) == 10
    assert await cache.decr("visits") == 9


@pytest.mark.asyncio
async def test_sessions_use_session_ttl_and_are_flushed(store, clock) -> None:
    cache = CacheService(store, CacheSettings(session_ttl_seconds=86400))

    await cache.set_user_session(7, {"role": "admin"})
    assert await cache.get_user_session(7) == {"role": "admin"}
    assert await store.ttl(session_key(7)) == 86400

    assert await cache.flush_all() is True
    assert await cache.get_user_session(7) is None


@pytest.mark.asyncio
async def test_delete_user_session(cache) -> None:
    await cache.set_user_session("u1", {"a": 1})

    assert await cache.delete_user_session("u1") is True
    assert await cache.get_user_session("u1") is None


@pytest.mark.asyncio
async def test_outage_degrades_without_raising() -> None:
    cache = CacheService(_failing_store())

    assert await cache.get("product:42") is None
    assert await cache.set("product:42", {"id": 42}) is False
    assert await cache.delete("product:42") is False
    assert await cache.delete_pattern("products:*") == 0
    assert await cache.exists("product:42") is False
    assert await cache.ttl("product:42") == -1
    assert await cache.incr("visits") == 0
    assert await cache.hgetall("user:1") == {}
    assert await cache.lrange("recent") == []
    assert await cache.smembers("roles") == []
    assert await cache.flush_all() is False
    assert await cache.get_info() is None
    assert cache.stats()["errors"] == 12


@pytest.mark.asyncio
async def test_outage_get_or_set_still_returns_loaded_value() -> None:
    cache = CacheService(_failing_store())
    loader = AsyncMock(return_value={"count": 1})

    assert await cache.get_or_set("users:stats", loader) == {"count": 1}


@pytest.mark.asyncio
async def test_stats_track_hits_and_misses(cache) -> None:
    await cache.set("k", 1)
    await cache.get("k")
    await cache.get("missing")

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["errors"] == 0


@pytest.mark.asyncio
async def test_session_with_zero_ttl_is_persistent(store, cache, clock) -> None:
    await cache.set_user_session(7, {"role": "admin"}, ttl=0)

    assert await store.ttl(session_key(7)) == -1
    clock.return_value = 10_000_000.0
    assert await cache.get_user_session(7) == {"role": "admin"}

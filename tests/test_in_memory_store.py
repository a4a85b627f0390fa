"""Unit tests for the in-process key-value store."""

import pytest

from app.adapters.kv_store.base import NO_TTL
from app.core.errors import CacheUnavailableError


@pytest.mark.asyncio
async def test_set_get_and_expire_with_clock(store, clock) -> None:
    await store.set("product:42", '{"id": 42}', 10)

    assert await store.get("product:42") == '{"id": 42}'
    assert await store.ttl("product:42") == 10

    clock.return_value = 1_010.0
    assert await store.get("product:42") is None
    assert await store.exists("product:42") is False


@pytest.mark.asyncio
async def test_ttl_reports_no_ttl_for_persistent_and_missing_keys(store) -> None:
    await store.set("config", "1")

    assert await store.ttl("config") == NO_TTL
    assert await store.ttl("missing") == NO_TTL


@pytest.mark.asyncio
async def test_delete_counts_only_existing_keys(store) -> None:
    await store.set("a", "1")

    assert await store.delete("a", "b") == 1
    assert await store.delete("a") == 0


@pytest.mark.asyncio
async def test_delete_pattern_matches_glob(store) -> None:
    await store.set("products:list:page=1", "[]")
    await store.set("products:stats", "{}")
    await store.set("product:42", "{}")

    assert await store.delete_pattern("products:*") == 2
    assert await store.exists("product:42") is True


@pytest.mark.asyncio
async def test_increment_creates_and_rejects_non_integers(store) -> None:
    assert await store.increment("hits") == 1
    assert await store.increment("hits", 4) == 5
    assert await store.decrement("hits") == 4

    await store.set("name", "abc")
    with pytest.raises(CacheUnavailableError) as exc_info:
        await store.increment("name")
    assert exc_info.value.code == "cache_wrong_type"


@pytest.mark.asyncio
async def test_increment_window_opens_and_counts(store, clock) -> None:
    assert await store.increment_window("rate_limit:k", 60) == (1, 60)

    clock.return_value = 1_020.0
    assert await store.increment_window("rate_limit:k", 60) == (2, 40)

    clock.return_value = 1_060.0
    assert await store.increment_window("rate_limit:k", 60) == (1, 60)


@pytest.mark.asyncio
async def test_increment_window_replaces_corrupt_counter(store) -> None:
    await store.set("rate_limit:k", "garbage", 60)

    assert await store.increment_window("rate_limit:k", 60) == (1, 60)


@pytest.mark.asyncio
async def test_hash_operations(store) -> None:
    assert await store.hset("user:1", "name", '"ana"') == 1
    assert await store.hset("user:1", "name", '"bia"') == 0
    assert await store.hget("user:1", "name") == '"bia"'
    assert await store.hgetall("user:1") == {"name": '"bia"'}

    assert await store.hdel("user:1", "name") == 1
    assert await store.exists("user:1") is False


@pytest.mark.asyncio
async def test_list_operations_follow_inclusive_stop(store) -> None:
    await store.rpush("queue", "b")
    await store.rpush("queue", "c")
    await store.lpush("queue", "a")

    assert await store.lrange("queue", 0, -1) == ["a", "b", "c"]
    assert await store.lrange("queue", 0, 1) == ["a", "b"]
    assert await store.lpop("queue") == "a"


@pytest.mark.asyncio
async def test_set_operations(store) -> None:
    assert await store.sadd("tags", "x") == 1
    assert await store.sadd("tags", "x") == 0
    assert await store.smembers("tags") == {"x"}


@pytest.mark.asyncio
async def test_wrong_type_access_raises(store) -> None:
    await store.sadd("tags", "x")

    with pytest.raises(CacheUnavailableError):
        await store.get("tags")


@pytest.mark.asyncio
async def test_flush_all_and_info(store) -> None:
    await store.set("a", "1")
    await store.set("b", "2")
    assert (await store.info())["keys"] == 2

    await store.flush_all()
    assert (await store.info())["keys"] == 0

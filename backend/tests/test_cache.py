"""Tests for the in-process and Redis profile caches."""

import json
from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import CacheError
from app.modules.profiles.cache import PRIMARY_VIEW, TRUST_SCORE_VIEW, InMemoryProfileCache, RedisProfileCache


class TestInMemoryProfileCache:
    async def test_miss_when_empty(self, cache: InMemoryProfileCache) -> None:
        assert await cache.get("owner-1", PRIMARY_VIEW) is None

    async def test_hit_within_ttl(self, cache: InMemoryProfileCache, clock) -> None:
        await cache.set("owner-1", PRIMARY_VIEW, {"id": "abc"})
        clock.advance(299)
        assert await cache.get("owner-1", PRIMARY_VIEW) == {"id": "abc"}

    async def test_expires_at_ttl(self, cache: InMemoryProfileCache, clock) -> None:
        await cache.set("owner-1", PRIMARY_VIEW, {"id": "abc"})
        clock.advance(300)
        assert await cache.get("owner-1", PRIMARY_VIEW) is None

    async def test_expired_entry_is_kept_until_cleared(self, cache: InMemoryProfileCache, clock) -> None:
        await cache.set("owner-1", PRIMARY_VIEW, {"id": "abc"})
        clock.advance(1000)
        await cache.get("owner-1", PRIMARY_VIEW)
        assert ("owner-1", PRIMARY_VIEW) in cache._entries
        await cache.clear("owner-1", PRIMARY_VIEW)
        assert ("owner-1", PRIMARY_VIEW) not in cache._entries

    async def test_set_overwrites_and_restarts_ttl(self, cache: InMemoryProfileCache, clock) -> None:
        await cache.set("owner-1", PRIMARY_VIEW, {"v": 1})
        clock.advance(200)
        await cache.set("owner-1", PRIMARY_VIEW, {"v": 2})
        clock.advance(200)
        assert await cache.get("owner-1", PRIMARY_VIEW) == {"v": 2}

    async def test_views_and_owners_are_independent(self, cache: InMemoryProfileCache) -> None:
        await cache.set("owner-1", PRIMARY_VIEW, {"v": "p"})
        await cache.set("owner-1", TRUST_SCORE_VIEW, {"score": 50})
        await cache.set("owner-2", PRIMARY_VIEW, {"v": "other"})
        await cache.clear("owner-1", PRIMARY_VIEW)
        assert await cache.get("owner-1", PRIMARY_VIEW) is None
        assert await cache.get("owner-1", TRUST_SCORE_VIEW) == {"score": 50}
        assert await cache.get("owner-2", PRIMARY_VIEW) == {"v": "other"}

    async def test_clear_missing_entry_is_noop(self, cache: InMemoryProfileCache) -> None:
        await cache.clear("nobody", PRIMARY_VIEW)

    async def test_clear_all(self, cache: InMemoryProfileCache) -> None:
        await cache.set("owner-1", PRIMARY_VIEW, {})
        cache.clear_all()
        assert await cache.get("owner-1", PRIMARY_VIEW) is None


class TestRedisProfileCache:
    @pytest.fixture
    def client(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def redis_cache(self, client: AsyncMock) -> RedisProfileCache:
        return RedisProfileCache(client, ttl_seconds=120, key_prefix="pc:")

    async def test_set_uses_json_and_ttl(self, redis_cache: RedisProfileCache, client: AsyncMock) -> None:
        await redis_cache.set("owner-1", TRUST_SCORE_VIEW, {"score": 55})
        client.set.assert_awaited_once_with("pc:owner-1:trustScore", json.dumps({"score": 55}), ex=120)

    async def test_get_decodes_json(self, redis_cache: RedisProfileCache, client: AsyncMock) -> None:
        client.get.return_value = '{"score": 55}'
        assert await redis_cache.get("owner-1", TRUST_SCORE_VIEW) == {"score": 55}
        client.get.assert_awaited_once_with("pc:owner-1:trustScore")

    async def test_get_miss(self, redis_cache: RedisProfileCache, client: AsyncMock) -> None:
        client.get.return_value = None
        assert await redis_cache.get("owner-1", PRIMARY_VIEW) is None

    async def test_undecodable_value_is_a_miss(self, redis_cache: RedisProfileCache, client: AsyncMock) -> None:
        client.get.return_value = "not-json"
        assert await redis_cache.get("owner-1", PRIMARY_VIEW) is None

    async def test_clear_deletes_key(self, redis_cache: RedisProfileCache, client: AsyncMock) -> None:
        await redis_cache.clear("owner-1", PRIMARY_VIEW)
        client.delete.assert_awaited_once_with("pc:owner-1:primary")

    async def test_backend_errors_become_cache_errors(self, redis_cache: RedisProfileCache, client: AsyncMock) -> None:
        client.delete.side_effect = ConnectionError("redis down")
        with pytest.raises(CacheError):
            await redis_cache.clear("owner-1", PRIMARY_VIEW)


class TestZeroTtl:
    async def test_in_memory_never_hits(self, clock) -> None:
        cache = InMemoryProfileCache(ttl_seconds=0, clock=clock)
        assert cache.ttl_seconds == 0
        await cache.set("owner-1", PRIMARY_VIEW, {"id": "abc"})
        assert await cache.get("owner-1", PRIMARY_VIEW) is None

    async def test_redis_skips_set(self) -> None:
        client = AsyncMock()
        cache = RedisProfileCache(client, ttl_seconds=0)
        await cache.set("owner-1", PRIMARY_VIEW, {"id": "abc"})
        client.set.assert_not_awaited()

"""Tests for the best-effort Redis cache."""

import json
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from catalog.services import redis_client
from catalog.services.cache import CacheStore
from catalog.services.redis_client import RedisConnection
from tests.conftest import FakeRedis


class TestCacheStore:
    def setup_method(self):
        self.redis = FakeRedis()
        self.cache = CacheStore(self.redis, key_prefix="test:", default_ttl=3600)

    async def test_set_then_get_round_trips(self):
        records = [{"id": "p1", "name": "bread", "price": 500, "expiry_date": None}]
        assert await self.cache.set("products:list", records) is True
        assert await self.cache.get("products:list") == records

    async def test_values_are_stored_as_json_under_prefix(self):
        await self.cache.set("products:list", [{"id": "p1"}])
        assert json.loads(self.redis.store["test:products:list"]) == [{"id": "p1"}]

    async def test_default_ttl_applied(self):
        await self.cache.set("products:list", [])
        assert self.redis.ttls["test:products:list"] == self.redis.clock + 3600

    async def test_explicit_ttl(self):
        await self.cache.set("k", 1, ttl=60)
        assert self.redis.ttls["test:k"] == self.redis.clock + 60

    async def test_get_missing_returns_none(self):
        assert await self.cache.get("nothing") is None

    async def test_entry_expires_after_ttl(self):
        await self.cache.set("k", {"a": 1}, ttl=10)
        self.redis.clock += 11
        assert await self.cache.get("k") is None

    async def test_empty_collection_is_a_hit(self):
        await self.cache.set("categories:list", [])
        assert await self.cache.get("categories:list") == []

    async def test_delete_removes_entry(self):
        await self.cache.set("k", 1)
        assert await self.cache.delete("k") is True
        assert await self.cache.get("k") is None

    async def test_delete_absent_key_is_noop(self):
        assert await self.cache.delete("never-set") is True


class TestCacheUnavailable:
    async def test_no_client_behaves_as_miss(self):
        cache = CacheStore(None)
        assert await cache.get("k") is None
        assert await cache.set("k", 1) is False
        assert await cache.delete("k") is False

    async def test_redis_errors_are_swallowed(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        client.set.side_effect = RedisConnectionError("down")
        client.delete.side_effect = RedisConnectionError("down")
        cache = CacheStore(client)

        assert await cache.get("k") is None
        assert await cache.set("k", 1) is False
        assert await cache.delete("k") is False

    async def test_corrupt_value_is_a_miss(self):
        redis = FakeRedis()
        redis.store["catalog:k"] = "{not json"
        cache = CacheStore(redis)
        assert await cache.get("k") is None


class TestRedisConnection:
    async def test_no_url_leaves_cache_disabled(self):
        conn = RedisConnection("")
        await conn.connect()
        assert conn.client is None
        assert await conn.is_healthy() is False

    async def test_client_kept_when_startup_ping_fails(self, monkeypatch):
        client = AsyncMock()
        client.ping.side_effect = [RedisConnectionError("down"), True]
        client.get.return_value = json.dumps([{"id": "p1"}])
        client.delete.return_value = 1
        monkeypatch.setattr(redis_client.aioredis, "from_url", lambda url, **kwargs: client)

        conn = RedisConnection("redis://localhost:6379/0")
        await conn.connect()

        assert conn.client is client
        client.aclose.assert_not_called()
        # Once Redis answers again the same client serves reads and invalidations
        assert await conn.is_healthy() is True
        cache = CacheStore(conn.client)
        assert await cache.get("products:list") == [{"id": "p1"}]
        assert await cache.delete("products:list") is True
        client.delete.assert_awaited_once_with("catalog:products:list")

"""
Tests for the Redis position store.

The redis.asyncio client is replaced by an AsyncMock backed by a dict, so
these tests need no running Redis.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from falak.caching import InprocPositionStore
from falak.caching_redis import RedisPositionStore, build_position_store
from falak.ephemeris.bodies import Planet, PlanetPosition
from falak.errors import CacheError


def _position(longitude: float = 103.75) -> PlanetPosition:
    return PlanetPosition(planet_id=Planet.MARS, longitude=longitude, latitude=3.1, speed=0.18, distance=0.8)


@pytest.fixture
def fake_redis():
    """AsyncMock Redis client storing values in a dict."""
    data = {}
    client = MagicMock()

    async def _get(key):
        return data.get(key)

    async def _set(key, value, ex=None):
        data[key] = value
        return True

    client.get = AsyncMock(side_effect=_get)
    client.set = AsyncMock(side_effect=_set)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.data = data
    return client


@pytest.fixture
def store(fake_redis, fake_clock):
    return RedisPositionStore(
        "redis://localhost:6379/0",
        ttl_seconds=48 * 3600,
        client=fake_redis,
        clock=fake_clock
    )


class TestRedisPositionStore:

    async def test_put_writes_json_with_native_ttl(self, store, fake_redis, bucket_14z):
        await store.put("mars", bucket_14z, _position())

        fake_redis.set.assert_awaited_once()
        key, payload = fake_redis.set.await_args.args
        assert key == "falak:ephemeris:mars:2025-03-10T14:00:00Z"
        assert fake_redis.set.await_args.kwargs["ex"] == 48 * 3600

        record = json.loads(payload)
        assert record["planet_id"] == "mars"
        assert record["longitude"] == pytest.approx(103.75)
        assert "zodiac_sign" not in record

    async def test_round_trip(self, store, bucket_14z):
        await store.put("mars", bucket_14z, _position())

        cached = await store.get("mars", bucket_14z + timedelta(minutes=10))

        assert cached == _position()

    async def test_miss(self, store, bucket_14z):
        assert await store.get("mars", bucket_14z) is None
        assert store.get_stats()["misses"] == 1

    async def test_expiry_checked_on_read(self, store, bucket_14z, fake_clock):
        await store.put("mars", bucket_14z, _position())
        fake_clock.advance(hours=48)

        # Key still present in Redis, but past its recorded expiry
        assert await store.get("mars", bucket_14z) is None

    async def test_upsert_overwrites_single_key(self, store, fake_redis, bucket_14z):
        await store.put("mars", bucket_14z, _position(103.75))
        await store.put("mars", bucket_14z, _position(104.5))

        assert len(fake_redis.data) == 1
        assert (await store.get("mars", bucket_14z)).longitude == pytest.approx(104.5)

    async def test_get_failure_raises_cache_error(self, store, fake_redis, bucket_14z):
        fake_redis.get.side_effect = ConnectionError("Connection refused")

        with pytest.raises(CacheError) as exc_info:
            await store.get("mars", bucket_14z)

        assert exc_info.value.code == "CACHE.UNAVAILABLE"
        assert store.get_stats()["errors"] == 1
        assert "Connection refused" in store.get_stats()["last_error"]

    async def test_set_failure_raises_cache_error(self, store, fake_redis, bucket_14z):
        fake_redis.set.side_effect = ConnectionError("READONLY replica")

        with pytest.raises(CacheError):
            await store.put("mars", bucket_14z, _position())

    async def test_corrupt_record_raises_cache_error(self, store, fake_redis, bucket_14z):
        fake_redis.data["falak:ephemeris:mars:2025-03-10T14:00:00Z"] = "{not json"

        with pytest.raises(CacheError):
            await store.get("mars", bucket_14z)

    async def test_health_check(self, store, fake_redis):
        health = await store.health_check()
        assert health["healthy"] is True
        assert "latency_ms" in health

        fake_redis.ping.side_effect = ConnectionError("down")
        health = await store.health_check()
        assert health["healthy"] is False
        assert health["error"] == "down"

    async def test_close(self, store, fake_redis):
        await store.close()
        fake_redis.aclose.assert_awaited_once()


class TestBuildPositionStore:

    def test_memory_backend(self):
        store = build_position_store("memory", 48)

        assert isinstance(store, InprocPositionStore)
        assert store.ttl == 48 * 3600

    def test_redis_backend(self):
        store = build_position_store("redis", 24, redis_url="redis://localhost:6379/1")

        assert isinstance(store, RedisPositionStore)
        assert store.ttl == 24 * 3600
        assert store.url == "redis://localhost:6379/1"

"""
Tests for the in-process position store.

Time is driven by a settable clock so TTL behaviour is checked at exact
boundaries without sleeping.
"""

from datetime import timedelta

import pytest

from falak.caching import CacheEntry, CacheKey, InprocPositionStore
from falak.ephemeris.bodies import Planet, PlanetPosition


def _position(longitude: float, planet: Planet = Planet.MARS) -> PlanetPosition:
    return PlanetPosition(planet_id=planet, longitude=longitude, latitude=1.0, speed=0.5, distance=1.2)


@pytest.fixture
def store(fake_clock):
    return InprocPositionStore(ttl_seconds=48 * 3600, clock=fake_clock)


class TestCacheKey:

    def test_key_truncates_to_hour(self, bucket_14z):
        key = CacheKey.for_position("Mars", bucket_14z + timedelta(minutes=27, seconds=13))

        assert key == (Planet.MARS, bucket_14z)

    def test_string_key(self, bucket_14z):
        assert CacheKey.to_string(Planet.MOON, bucket_14z) == "moon:2025-03-10T14:00:00Z"


class TestBasicOperations:

    async def test_miss_on_empty_store(self, store, bucket_14z):
        assert await store.get("mars", bucket_14z) is None

    async def test_put_then_get(self, store, bucket_14z):
        await store.put("mars", bucket_14z, _position(103.75))

        cached = await store.get(Planet.MARS, bucket_14z)

        assert cached.longitude == pytest.approx(103.75)

    async def test_lookup_within_same_hour_hits(self, store, bucket_14z):
        await store.put("mars", bucket_14z, _position(103.75))

        assert await store.get("mars", bucket_14z + timedelta(minutes=59)) is not None
        assert await store.get("mars", bucket_14z + timedelta(hours=1)) is None

    async def test_planets_are_separate_keys(self, store, bucket_14z):
        await store.put("mars", bucket_14z, _position(103.75))

        assert await store.get("venus", bucket_14z) is None

    async def test_put_returns_entry_with_expiry(self, store, bucket_14z, fake_clock):
        entry = await store.put("mars", bucket_14z, _position(103.75))

        assert isinstance(entry, CacheEntry)
        assert entry.hour_bucket == bucket_14z
        assert entry.cached_at == fake_clock.now
        assert entry.expires_at == fake_clock.now + timedelta(hours=48)


class TestUpsert:
    """Writes for the same key converge on one entry."""

    async def test_same_write_twice_yields_one_entry(self, store, bucket_14z):
        await store.put("mars", bucket_14z, _position(103.75))
        await store.put("mars", bucket_14z, _position(103.75))

        assert store.get_stats()["size"] == 1
        assert (await store.get("mars", bucket_14z)).longitude == pytest.approx(103.75)

    async def test_later_write_wins(self, store, bucket_14z):
        await store.put("mars", bucket_14z, _position(103.75))
        await store.put("mars", bucket_14z + timedelta(minutes=30), _position(104.0))

        assert store.get_stats()["size"] == 1
        assert (await store.get("mars", bucket_14z)).longitude == pytest.approx(104.0)

    async def test_rewrite_restarts_ttl(self, store, bucket_14z, fake_clock):
        await store.put("mars", bucket_14z, _position(103.75))
        fake_clock.advance(hours=47)
        await store.put("mars", bucket_14z, _position(103.75))
        fake_clock.advance(hours=2)

        assert await store.get("mars", bucket_14z) is not None


class TestExpiry:
    """Fixed 48h TTL from write time, no sliding expiry."""

    async def test_hit_just_before_48h(self, store, bucket_14z, fake_clock):
        await store.put("mars", bucket_14z, _position(103.75))
        fake_clock.advance(hours=48, microseconds=-1)

        assert await store.get("mars", bucket_14z) is not None

    async def test_miss_at_exactly_48h(self, store, bucket_14z, fake_clock):
        await store.put("mars", bucket_14z, _position(103.75))
        fake_clock.advance(hours=48)

        assert await store.get("mars", bucket_14z) is None

    async def test_reads_do_not_extend_ttl(self, store, bucket_14z, fake_clock):
        await store.put("mars", bucket_14z, _position(103.75))
        for _ in range(4):
            fake_clock.advance(hours=11)
            assert await store.get("mars", bucket_14z) is not None

        fake_clock.advance(hours=4)
        assert await store.get("mars", bucket_14z) is None

    async def test_expired_and_absent_look_the_same(self, store, bucket_14z, fake_clock):
        await store.put("mars", bucket_14z, _position(103.75))
        fake_clock.advance(hours=49)

        expired = await store.get("mars", bucket_14z)
        absent = await store.get("jupiter", bucket_14z)

        assert expired is None and absent is None

    async def test_short_ttl_for_tests(self, bucket_14z, fake_clock):
        store = InprocPositionStore(ttl_seconds=1, clock=fake_clock)
        await store.put("mars", bucket_14z, _position(103.75))
        fake_clock.advance(seconds=1)

        assert await store.get("mars", bucket_14z) is None


class TestMaintenance:

    async def test_cleanup_expired(self, store, bucket_14z, fake_clock):
        await store.put("mars", bucket_14z, _position(103.75))
        fake_clock.advance(hours=24)
        await store.put("venus", bucket_14z, _position(8.7, Planet.VENUS))
        fake_clock.advance(hours=25)

        removed = await store.cleanup_expired()

        assert removed == 1
        assert store.get_stats()["size"] == 1
        assert await store.get("venus", bucket_14z) is not None

    async def test_stats(self, store, bucket_14z):
        await store.get("mars", bucket_14z)
        await store.put("mars", bucket_14z, _position(103.75))
        await store.get("mars", bucket_14z)

        stats = store.get_stats()

        assert stats["type"] == "memory"
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["hit_rate"] == 0.5

    async def test_clear(self, store, bucket_14z):
        await store.put("mars", bucket_14z, _position(103.75))
        await store.clear()

        assert store.get_stats()["size"] == 0
        assert await store.get("mars", bucket_14z) is None

    async def test_health_check(self, store):
        assert (await store.health_check())["healthy"] is True

    async def test_contains(self, store, bucket_14z):
        assert not await store.contains("mars", bucket_14z)
        await store.put("mars", bucket_14z, _position(103.75))
        assert await store.contains("mars", bucket_14z)

"""
Redis-backed position store for the Falak Engine.

Shares hour-bucketed positions across worker processes and instances.
Records are JSON documents written with a native Redis TTL; the stored
``expires_at`` is checked on every read as well, so a record is never served
past its expiry even if the Redis key outlives it.
"""

import json
import time
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

import redis.asyncio as redis

from .caching import DEFAULT_TTL_SECONDS, CacheEntry, CacheKey, InprocPositionStore, PositionStore
from .ephemeris.bodies import Planet, PlanetPosition
from .errors import CacheError
from .util.dates import utc_now

logger = logging.getLogger(__name__)


class RedisPositionStore(PositionStore):
    """
    Redis position store with JSON serialization.

    Unlike the in-process store, failures are raised as CacheError so the
    caller can fall back to a fresh fetch.
    """

    backend = "redis"

    def __init__(
        self,
        url: str,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        key_prefix: str = "falak:ephemeris",
        client: Optional[redis.Redis] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize Redis store.

        Args:
            url: Redis connection URL
            ttl_seconds: Time-to-live in seconds from write time
            key_prefix: Prefix for all cache keys
            client: Pre-built client (tests inject a mock here)
            clock: Returns the current aware UTC datetime
        """
        self.url = url
        self.ttl = ttl_seconds
        self.key_prefix = key_prefix
        self._clock = clock
        self._redis = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "errors": 0,
            "last_error": None
        }

    def _make_key(self, planet: Union[str, Planet], hour_bucket: datetime) -> str:
        """Create full cache key with prefix."""
        return f"{self.key_prefix}:{CacheKey.to_string(planet, hour_bucket)}"

    def _record_error(self, operation: str, err: Exception) -> CacheError:
        logger.error(f"Redis cache {operation} error: {err}")
        self._stats["errors"] += 1
        self._stats["last_error"] = str(err)
        return CacheError(f"Redis {operation} failed: {err}")

    async def get(self, planet: Union[str, Planet], hour_bucket: datetime) -> Optional[PlanetPosition]:
        """
        Get a live position from Redis.

        Raises:
            CacheError: If Redis is unreachable or the record is corrupt
        """
        full_key = self._make_key(planet, hour_bucket)
        try:
            data = await self._redis.get(full_key)
        except Exception as e:
            raise self._record_error("get", e) from e

        if data is None:
            self._stats["misses"] += 1
            return None

        try:
            entry = CacheEntry.from_record(json.loads(data))
        except Exception as e:
            raise self._record_error("decode", e) from e

        if not entry.is_live(self._clock()):
            self._stats["misses"] += 1
            return None

        self._stats["hits"] += 1
        return entry.position

    async def put(
        self,
        planet: Union[str, Planet],
        hour_bucket: datetime,
        position: PlanetPosition
    ) -> CacheEntry:
        """
        Upsert a position with a fresh TTL.

        Raises:
            CacheError: If Redis rejected the write
        """
        planet_id, bucket = CacheKey.for_position(planet, hour_bucket)
        cached_at = self._clock()
        entry = CacheEntry(
            planet_id=planet_id,
            hour_bucket=bucket,
            position=position,
            cached_at=cached_at,
            expires_at=cached_at + timedelta(seconds=self.ttl),
        )
        data = json.dumps(entry.to_record(), separators=(",", ":"))

        try:
            await self._redis.set(self._make_key(planet_id, bucket), data, ex=int(self.ttl))
        except Exception as e:
            raise self._record_error("set", e) from e

        self._stats["sets"] += 1
        return entry

    async def clear(self) -> None:
        """Delete every key under this store's prefix."""
        try:
            keys = [key async for key in self._redis.scan_iter(match=f"{self.key_prefix}:*")]
            if keys:
                await self._redis.delete(*keys)
        except Exception as e:
            raise self._record_error("clear", e) from e

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total_requests if total_requests > 0 else 0.0

        return {
            "type": self.backend,
            "url": self.url,
            "ttl_seconds": self.ttl,
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "sets": self._stats["sets"],
            "errors": self._stats["errors"],
            "hit_rate": hit_rate,
            "last_error": self._stats["last_error"]
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Ping Redis and report latency.

        Returns:
            Dict with health status
        """
        try:
            start_time = time.perf_counter()
            await self._redis.ping()
            latency_ms = (time.perf_counter() - start_time) * 1000
            return {
                "healthy": True,
                "latency_ms": round(latency_ms, 2)
            }
        except Exception as e:
            self._stats["errors"] += 1
            self._stats["last_error"] = str(e)
            return {
                "healthy": False,
                "error": str(e)
            }

    async def close(self) -> None:
        await self._redis.aclose()


def build_position_store(backend: str, ttl_hours: float, redis_url: str = "", key_prefix: str = "falak:ephemeris") -> PositionStore:
    """Create the configured position store."""
    ttl_seconds = ttl_hours * 3600
    if backend == "redis":
        logger.info(f"Using Redis position store at {redis_url}")
        return RedisPositionStore(redis_url, ttl_seconds=ttl_seconds, key_prefix=key_prefix)
    logger.info("Using in-process position store")
    return InprocPositionStore(ttl_seconds=ttl_seconds)

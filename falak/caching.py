import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel

from .ephemeris.bodies import Planet, PlanetPosition, parse_planet
from .util.dates import isoformat_z, truncate_to_hour, utc_now

DEFAULT_TTL_SECONDS = 48 * 3600


class CacheEntry(BaseModel):
    """
    A cached position for one (planet, hour bucket) pair.

    The entry is live while ``now < expires_at``; at exactly ``expires_at``
    it reads as a miss.
    """
    planet_id: Planet
    hour_bucket: datetime
    position: PlanetPosition
    cached_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at

    def to_record(self) -> Dict[str, Any]:
        """Flat, JSON-safe representation used by external backends."""
        return {
            **self.position.stored_fields(),
            "hour_bucket": isoformat_z(self.hour_bucket),
            "cached_at": self.cached_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CacheEntry":
        position = PlanetPosition.model_validate(record)
        return cls(
            planet_id=position.planet_id,
            hour_bucket=record["hour_bucket"],
            position=position,
            cached_at=record["cached_at"],
            expires_at=record["expires_at"],
        )


class CacheKey:
    """
    Helper class for generating consistent cache keys.
    """

    @staticmethod
    def for_position(planet: Union[str, Planet], hour_bucket: datetime) -> Tuple[Planet, datetime]:
        """
        Normalized (planet, hour bucket) key.

        Args:
            planet: Planet name or Planet
            hour_bucket: Any instant inside the hour (truncated here)

        Returns:
            Tuple used as the uniqueness key
        """
        return parse_planet(planet), truncate_to_hour(hour_bucket)

    @staticmethod
    def to_string(planet: Union[str, Planet], hour_bucket: datetime) -> str:
        planet, bucket = CacheKey.for_position(planet, hour_bucket)
        return f"{planet.value}:{isoformat_z(bucket)}"


class PositionStore:
    """
    Durable-cache contract for hour-bucketed planet positions.

    ``get`` returns a position only for a live entry; absent and expired
    entries are both reported as None. ``put`` is an upsert keyed on
    (planet, hour bucket) with a fixed TTL from write time; reads never extend
    it. Backend failures raise CacheError.
    """

    backend = "base"

    async def get(self, planet: Union[str, Planet], hour_bucket: datetime) -> Optional[PlanetPosition]:
        raise NotImplementedError

    async def put(
        self,
        planet: Union[str, Planet],
        hour_bucket: datetime,
        position: PlanetPosition
    ) -> CacheEntry:
        raise NotImplementedError

    async def contains(self, planet: Union[str, Planet], hour_bucket: datetime) -> bool:
        return await self.get(planet, hour_bucket) is not None

    async def cleanup_expired(self) -> int:
        return 0

    async def clear(self) -> None:
        raise NotImplementedError

    def get_stats(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def health_check(self) -> Dict[str, Any]:
        return {"healthy": True}

    async def close(self) -> None:
        return None


class InprocPositionStore(PositionStore):
    """
    Thread-safe in-process position store with TTL support.

    Entries expire a fixed TTL after their last write. There is no size-based
    eviction: ephemeris data only goes stale with time, never with access.
    """

    backend = "memory"

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], datetime] = utc_now):
        """
        Initialize store.

        Args:
            ttl_seconds: Time-to-live in seconds from write time
            clock: Returns the current aware UTC datetime
        """
        self.ttl = ttl_seconds
        self._clock = clock
        self.data: Dict[Tuple[Planet, datetime], CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._expired = 0

    async def get(self, planet: Union[str, Planet], hour_bucket: datetime) -> Optional[PlanetPosition]:
        """
        Get a live position from the store.

        Returns:
            Cached position or None if not found/expired
        """
        key = CacheKey.for_position(planet, hour_bucket)
        with self._lock:
            entry = self.data.get(key)
            if entry is None:
                self._misses += 1
                return None

            if not entry.is_live(self._clock()):
                self.data.pop(key, None)
                self._expired += 1
                self._misses += 1
                return None

            self._hits += 1
            return entry.position

    async def put(
        self,
        planet: Union[str, Planet],
        hour_bucket: datetime,
        position: PlanetPosition
    ) -> CacheEntry:
        """
        Upsert a position; a later write for the same key replaces the earlier one.
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
        with self._lock:
            self.data[(planet_id, bucket)] = entry
            self._sets += 1
        return entry

    async def cleanup_expired(self) -> int:
        """
        Remove expired entries from the store.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self.data.items() if not entry.is_live(now)]

            for key in expired_keys:
                self.data.pop(key, None)

            self._expired += len(expired_keys)
            return len(expired_keys)

    async def clear(self) -> None:
        """Clear all entries and counters."""
        with self._lock:
            self.data.clear()
            self._hits = 0
            self._misses = 0
            self._sets = 0
            self._expired = 0

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = self._hits / total_requests if total_requests > 0 else 0.0

            return {
                "type": self.backend,
                "size": len(self.data),
                "ttl_seconds": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "expired": self._expired,
                "hit_rate": hit_rate,
                "total_requests": total_requests
            }

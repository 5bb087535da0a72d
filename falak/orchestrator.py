"""
Per-request entry point for planet positions.

Normalizes the request, reads the position store, falls back to Horizons on
a miss and writes the result back. Cache and metric failures degrade
quietly; only validation and acquisition failures reach the caller.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .caching import PositionStore
from .ephemeris.bodies import Planet, PlanetPosition, parse_planet
from .errors import AcquisitionError, CacheError, FalakError, bad_request
from .horizons.client import HorizonsClient
from .obs.logging import StructuredLogger
from .obs.metrics import MetricRecord, MetricsSink, NullMetricsSink, emit_safely, record_cache_lookup, record_cache_write
from .schemas import PositionResponse
from .util.dates import isoformat_z, parse_request_datetime, resolve_timezone, truncate_to_hour

logger = logging.getLogger(__name__)
business_logger = StructuredLogger(__name__)

EPHEMERIS_ENDPOINT = "/v1/ephemeris"


def validate_date(date: Optional[str], timezone: Optional[str] = "UTC") -> datetime:
    """
    Check and normalize the date and timezone fields.

    Returns:
        Aware UTC datetime

    Raises:
        ValidationError: For a missing date, unknown timezone or bad timestamp
    """
    if date is None or not str(date).strip():
        bad_request("INPUT.MISSING_FIELD", "Missing required field: date")

    try:
        resolve_timezone(timezone or "UTC")
    except ValueError as e:
        bad_request("INPUT.INVALID_TIMEZONE", str(e))

    try:
        return parse_request_datetime(date, timezone or "UTC")
    except ValueError as e:
        bad_request("INPUT.INVALID_DATE", str(e))


def validate_request(planet: Optional[str], date: Optional[str], timezone: Optional[str] = "UTC"):
    """
    Check and normalize request fields.

    Returns:
        Tuple of (Planet, aware UTC datetime)

    Raises:
        ValidationError: For missing or malformed fields
    """
    if planet is None or not str(planet).strip():
        bad_request("INPUT.MISSING_FIELD", "Missing required field: planet")
    if date is None or not str(date).strip():
        bad_request("INPUT.MISSING_FIELD", "Missing required field: date")

    try:
        planet_id = parse_planet(planet)
    except ValueError as e:
        bad_request("INPUT.UNKNOWN_PLANET", str(e))

    return planet_id, validate_date(date, timezone)


class EphemerisOrchestrator:
    """
    Cache-first position lookup.

    Holds no per-request state; concurrent misses for the same bucket may
    each fetch upstream, and the store's upsert makes the writes converge.
    """

    def __init__(
        self,
        store: PositionStore,
        client: HorizonsClient,
        sink: Optional[MetricsSink] = None,
        clock: Callable[[], float] = time.perf_counter
    ):
        self.store = store
        self.client = client
        self.sink = sink or NullMetricsSink()
        self._clock = clock

    async def _read_cache(self, planet: Planet, hour_bucket: datetime) -> Optional[PlanetPosition]:
        try:
            position = await self.store.get(planet, hour_bucket)
        except CacheError as e:
            record_cache_lookup("error")
            business_logger.cache_degraded("get", planet.value, isoformat_z(hour_bucket), e.message)
            return None

        record_cache_lookup("hit" if position is not None else "miss")
        return position

    async def _write_cache(self, planet: Planet, hour_bucket: datetime, position: PlanetPosition) -> None:
        try:
            await self.store.put(planet, hour_bucket, position)
        except CacheError as e:
            record_cache_write(False)
            business_logger.cache_degraded("put", planet.value, isoformat_z(hour_bucket), e.message)
            return
        record_cache_write(True)

    def _emit(
        self,
        endpoint: str,
        started: float,
        status_code: int,
        params: Dict[str, Any],
        cache_hit: bool = False,
        cache_source: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> float:
        elapsed_ms = (self._clock() - started) * 1000
        emit_safely(self.sink, MetricRecord(
            endpoint=endpoint,
            cache_hit=cache_hit,
            cache_source=cache_source,
            response_time_ms=elapsed_ms,
            status_code=status_code,
            error_message=error_message,
            request_params=params,
        ))
        return elapsed_ms

    def validate(
        self,
        planet: Optional[str],
        date: Optional[str],
        timezone: Optional[str] = "UTC",
        endpoint: str = EPHEMERIS_ENDPOINT,
        require_planet: bool = True
    ) -> Tuple[Optional[Planet], datetime]:
        """
        Validate request fields, emitting the metric record for a rejection.

        Endpoints that check their input before any lookup call this so a
        rejected request is metered like one rejected inside ``handle``.

        Returns:
            Tuple of (Planet or None when not required, aware UTC datetime)
        """
        started = self._clock()
        try:
            if require_planet:
                return validate_request(planet, date, timezone)
            return None, validate_date(date, timezone)
        except FalakError as e:
            params = {"planet": planet, "date": date, "timezone": timezone}
            elapsed_ms = self._emit(endpoint, started, e.status_code, params, error_message=e.message)
            business_logger.position_error(e.code, e.message, planet, elapsed_ms)
            raise

    async def handle(
        self,
        planet: Optional[str],
        date: Optional[str],
        timezone: Optional[str] = "UTC",
        endpoint: str = EPHEMERIS_ENDPOINT
    ) -> PositionResponse:
        """
        Serve one planet position for the hour containing ``date``.

        Args:
            planet: Planet name
            date: ISO-8601 timestamp
            timezone: IANA zone for timestamps without an offset
            endpoint: Label recorded on the metric record

        Returns:
            PositionResponse with cache_status HIT or MISS

        Raises:
            ValidationError: Bad input; the store is not touched
            AcquisitionError: Cache miss and Horizons failed after retries
        """
        started = self._clock()
        params = {"planet": planet, "date": date, "timezone": timezone}
        planet_id, moment = self.validate(planet, date, timezone, endpoint)

        hour_bucket = truncate_to_hour(moment)
        bucket_label = isoformat_z(hour_bucket)

        position = await self._read_cache(planet_id, hour_bucket)
        if position is not None:
            cache_status = "HIT"
        else:
            try:
                position = await self.client.fetch(planet_id, hour_bucket)
            except AcquisitionError as e:
                elapsed_ms = self._emit(
                    endpoint, started, e.status_code, params,
                    cache_source="horizons", error_message=e.message
                )
                business_logger.position_error(e.code, e.message, planet_id.value, elapsed_ms)
                raise

            await self._write_cache(planet_id, hour_bucket, position)
            cache_status = "MISS"

        elapsed_ms = self._emit(
            endpoint, started, 200, params,
            cache_hit=cache_status == "HIT",
            cache_source="cache" if cache_status == "HIT" else "horizons"
        )
        business_logger.position_served(planet_id.value, bucket_label, cache_status, elapsed_ms)

        return PositionResponse(
            **position.model_dump(mode="json"),
            hour_bucket=bucket_label,
            cache_status=cache_status,
            response_time_ms=round(elapsed_ms, 2),
        )

    async def handle_many(
        self,
        planets: Iterable[str],
        date: Optional[str],
        timezone: Optional[str] = "UTC",
        endpoint: str = EPHEMERIS_ENDPOINT
    ) -> Dict[Planet, PositionResponse]:
        """
        Serve several planets for the same instant concurrently.

        Any failure is raised after all lookups have finished.
        """
        planet_list = list(planets)
        results = await asyncio.gather(
            *(self.handle(planet, date, timezone, endpoint) for planet in planet_list),
            return_exceptions=True
        )

        responses: Dict[Planet, PositionResponse] = {}
        for result in results:
            if isinstance(result, BaseException):
                raise result
            responses[Planet(result.planet_id)] = result
        return responses


def to_position(response: PositionResponse) -> PlanetPosition:
    """Strip the response envelope back to a PlanetPosition."""
    return PlanetPosition.model_validate(response.model_dump())

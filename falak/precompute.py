"""
Cache warming for upcoming hour buckets.

Fills the position store ahead of demand so request traffic mostly hits
the cache. Hours are processed one batch at a time with a pause between
batches to stay under Horizons' rate limits.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, Optional, Union

from .caching import PositionStore
from .ephemeris.bodies import Planet, parse_planet
from .errors import AcquisitionError, CacheError
from .horizons.client import HorizonsClient
from .obs.logging import StructuredLogger, TimedOperation
from .util.dates import isoformat_z, truncate_to_hour, utc_now

logger = logging.getLogger(__name__)
business_logger = StructuredLogger(__name__)


async def _warm_one(
    store: PositionStore,
    client: HorizonsClient,
    planet: Planet,
    hour_bucket: datetime
) -> str:
    try:
        if await store.contains(planet, hour_bucket):
            return "skipped"
    except CacheError as e:
        business_logger.cache_degraded("get", planet.value, isoformat_z(hour_bucket), e.message)

    try:
        position = await client.fetch(planet, hour_bucket)
    except AcquisitionError as e:
        logger.error(f"Precompute failed for {planet.value} at {isoformat_z(hour_bucket)}: {e.message}")
        return "errors"

    try:
        await store.put(planet, hour_bucket, position)
    except CacheError as e:
        business_logger.cache_degraded("put", planet.value, isoformat_z(hour_bucket), e.message)
        return "errors"
    return "computed"


async def precompute(
    store: PositionStore,
    client: HorizonsClient,
    start: Optional[datetime] = None,
    hours_ahead: int = 48,
    planets: Optional[Iterable[Union[str, Planet]]] = None,
    batch_pause_seconds: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> Dict[str, int]:
    """
    Warm the store for ``hours_ahead`` hour buckets starting at ``start``.

    Args:
        store: Position store to fill
        client: Horizons client used on misses
        start: First instant to cover (defaults to now)
        hours_ahead: Number of hour buckets
        planets: Planets to warm (defaults to all seven)
        batch_pause_seconds: Pause between hour batches
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Counts of computed, skipped and failed entries
    """
    first_bucket = truncate_to_hour(start or utc_now())
    planet_list = [parse_planet(p) for p in planets] if planets is not None else list(Planet)
    counts = {"computed": 0, "skipped": 0, "errors": 0}

    with TimedOperation(business_logger, "precompute", hours=hours_ahead, planets=len(planet_list)):
        for offset in range(hours_ahead):
            hour_bucket = first_bucket + timedelta(hours=offset)
            outcomes = await asyncio.gather(
                *(_warm_one(store, client, planet, hour_bucket) for planet in planet_list)
            )
            for outcome in outcomes:
                counts[outcome] += 1

            logger.info(f"Precomputed {isoformat_z(hour_bucket)} ({offset + 1}/{hours_ahead})")

            if batch_pause_seconds > 0 and offset < hours_ahead - 1 and any(o != "skipped" for o in outcomes):
                await sleep(batch_pause_seconds)

    logger.info(
        f"Precompute complete: {counts['computed']} computed, "
        f"{counts['skipped']} skipped, {counts['errors']} errors"
    )
    return counts

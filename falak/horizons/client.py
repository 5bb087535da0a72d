import asyncio
import httpx
import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, Optional, Union

from ..config import HorizonsConfig
from ..ephemeris.bodies import HORIZONS_CODES, Planet, PlanetPosition, parse_planet
from ..errors import AcquisitionError, bad_request, map_http_client_error
from ..obs.logging import StructuredLogger
from ..obs.metrics import record_acquisition_attempt, record_acquisition_duration
from .parser import parse_horizons_response

logger = logging.getLogger(__name__)
business_logger = StructuredLogger(__name__)

SERVICE_NAME = "Horizons"
HORIZONS_DATE_FORMAT = "%Y-%m-%d %H:%M"


def parse_step_hours(step_size: str) -> float:
    """Convert a Horizons step such as '1h', '30m' or '1d' to hours."""
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([mhd])\s*", step_size.lower())
    if not match:
        raise ValueError(f"Unsupported step size: {step_size}")
    value, unit = float(match.group(1)), match.group(2)
    return {"m": value / 60.0, "h": value, "d": value * 24.0}[unit]


def format_horizons_date(moment: datetime) -> str:
    """Format a UTC instant as Horizons expects: 'YYYY-MM-DD HH:MM'."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(HORIZONS_DATE_FORMAT)


class HorizonsClient:
    """
    Client for the JPL Horizons observer-ephemeris API.

    Each fetch requests exactly one hour window at the configured step and is
    retried with exponential backoff. Backoff uses ``asyncio.sleep`` so a
    retrying request never blocks other requests on the event loop.
    """

    def __init__(
        self,
        base_url: str = "https://ssd.jpl.nasa.gov/api/horizons.api",
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        initial_backoff_seconds: float = 1.0,
        backoff_factor: float = 2.0,
        step_size: str = "1h",
        deadline_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.initial_backoff_seconds = initial_backoff_seconds
        self.backoff_factor = backoff_factor
        self.step_size = step_size
        self.step_hours = parse_step_hours(step_size)
        self.deadline_seconds = deadline_seconds
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: HorizonsConfig, **overrides) -> "HorizonsClient":
        options = {
            "base_url": config.base_url,
            "timeout_seconds": config.timeout_seconds,
            "max_attempts": config.max_attempts,
            "initial_backoff_seconds": config.initial_backoff_seconds,
            "backoff_factor": config.backoff_factor,
            "step_size": config.step_size,
            "deadline_seconds": config.deadline_seconds,
        }
        options.update(overrides)
        return cls(**options)

    def build_params(self, planet: Planet, hour_bucket: datetime) -> Dict[str, str]:
        """Query parameters for one hour window starting at ``hour_bucket``."""
        return {
            "format": "text",
            "COMMAND": HORIZONS_CODES[planet],
            "EPHEM_TYPE": "OBSERVER",
            "CENTER": "500@399",  # Geocentric (Earth center)
            "START_TIME": format_horizons_date(hour_bucket),
            "STOP_TIME": format_horizons_date(hour_bucket + timedelta(hours=1)),
            "STEP_SIZE": self.step_size,
            "QUANTITIES": "31,20",  # Ecliptic lon/lat, distance and rate
            "CSV_FORMAT": "YES",
            "OBJ_DATA": "NO",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
            headers={"Accept": "text/plain"}
        )

    async def _attempt(self, planet: Planet, params: Dict[str, str], timeout: float) -> PlanetPosition:
        async with self._client(timeout) as client:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            return parse_horizons_response(response.text, planet, self.step_hours)

    async def fetch(self, planet: Union[str, Planet], hour_bucket: datetime) -> PlanetPosition:
        """
        Fetch one planet's position for an hour bucket.

        Args:
            planet: Planet name or Planet
            hour_bucket: UTC instant truncated to the hour

        Returns:
            Parsed PlanetPosition

        Raises:
            ValidationError: For an unknown planet (before any request is made)
            AcquisitionError: When every attempt failed; carries the last error
        """
        try:
            planet = parse_planet(planet)
        except ValueError as e:
            bad_request("INPUT.UNKNOWN_PLANET", str(e))

        params = self.build_params(planet, hour_bucket)
        started = self._clock()
        delay = self.initial_backoff_seconds
        last_error: Optional[Exception] = None
        attempts_made = 0

        for attempt in range(1, self.max_attempts + 1):
            attempt_timeout = self.timeout_seconds
            if self.deadline_seconds is not None:
                remaining = self.deadline_seconds - (self._clock() - started)
                if remaining <= 0:
                    break
                attempt_timeout = min(attempt_timeout, remaining)

            attempts_made = attempt
            logger.debug(f"Fetching {planet.value} from Horizons (attempt {attempt}/{self.max_attempts})")

            try:
                position = await asyncio.wait_for(
                    self._attempt(planet, params, attempt_timeout),
                    timeout=attempt_timeout
                )
            except Exception as e:
                last_error = e
                record_acquisition_attempt(planet.value, success=False)

                if attempt == self.max_attempts:
                    business_logger.acquisition_attempt_failed(
                        planet.value, attempt, self.max_attempts, str(e) or e.__class__.__name__
                    )
                    break

                if self.deadline_seconds is not None:
                    elapsed = self._clock() - started
                    if elapsed + delay >= self.deadline_seconds:
                        business_logger.acquisition_attempt_failed(
                            planet.value, attempt, self.max_attempts, str(e) or e.__class__.__name__
                        )
                        logger.warning(f"Deadline of {self.deadline_seconds}s leaves no room to retry {planet.value}")
                        break

                business_logger.acquisition_attempt_failed(
                    planet.value, attempt, self.max_attempts, str(e) or e.__class__.__name__,
                    retry_in_seconds=delay
                )
                await self._sleep(delay)
                delay *= self.backoff_factor
                continue

            duration = self._clock() - started
            record_acquisition_attempt(planet.value, success=True)
            record_acquisition_duration(duration)
            business_logger.acquisition_completed(planet.value, attempt, duration * 1000)
            return position

        record_acquisition_duration(self._clock() - started)

        if last_error is None:
            last_error = TimeoutError(f"Deadline of {self.deadline_seconds}s exceeded")

        error = map_http_client_error(last_error, SERVICE_NAME)
        business_logger.acquisition_exhausted(planet.value, attempts_made, error.message)
        raise error from last_error

    async def fetch_many(
        self,
        planets: Iterable[Union[str, Planet]],
        hour_bucket: datetime
    ) -> Dict[Planet, PlanetPosition]:
        """
        Fetch several planets concurrently for the same hour bucket.

        Planets that fail are logged and left out of the result.
        """
        planet_list = [parse_planet(p) for p in planets]
        results = await asyncio.gather(
            *(self.fetch(planet, hour_bucket) for planet in planet_list),
            return_exceptions=True
        )

        positions: Dict[Planet, PlanetPosition] = {}
        for planet, result in zip(planet_list, results):
            if isinstance(result, BaseException):
                if not isinstance(result, AcquisitionError):
                    raise result
                logger.error(f"Failed to fetch {planet.value}: {result}")
                continue
            positions[planet] = result
        return positions

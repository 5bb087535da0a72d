import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from falak.ephemeris.bodies import Planet, PlanetPosition
from falak.errors import AcquisitionError
from falak.horizons.client import HorizonsClient
from falak.obs.metrics import MetricsSink, MetricRecord

HORIZONS_HEADER = """\
*******************************************************************************
Ephemeris / API_USER Mon Mar 10 14:00:05 2025 Pasadena, USA      / Horizons
*******************************************************************************
Target body name: {name} ({code})
Center body name: Earth (399)                     {{source: DE441}}
Center-site name: GEOCENTRIC
*******************************************************************************
Start time      : A.D. 2025-Mar-10 14:00:00.0000 UT
Stop  time      : A.D. 2025-Mar-10 15:00:00.0000 UT
Step-size       : 60 minutes
*******************************************************************************
 Date__(UT)__HR:MN, , , ObsEcLon, ObsEcLat, delta, deldot,
*******************************************************************************
"""

HORIZONS_FOOTER = """\
*******************************************************************************
Column meaning:
 TIME
  Times PRIOR to 1962 are UT1, a mean-solar time closely related to the
  prior but now-deprecated GMT.
*******************************************************************************
"""


def make_horizons_text(
    rows: List[Tuple[str, str, str, str, str]],
    name: str = "Mars",
    code: str = "499"
) -> str:
    """Build a Horizons observer table with (timestamp, lon, lat, delta, deldot) rows."""
    lines = [f" {ts}, , , {lon}, {lat}, {delta}, {deldot}," for ts, lon, lat, delta, deldot in rows]
    return (
        HORIZONS_HEADER.format(name=name, code=code)
        + "$$SOE\n"
        + "\n".join(lines)
        + "\n$$EOE\n"
        + HORIZONS_FOOTER
    )


MARS_ROWS = [
    ("2025-Mar-10 14:00", "103.7512345", "3.1234567", "0.801234567890", "10.1234567"),
    ("2025-Mar-10 15:00", "103.7587345", "3.1232567", "0.801274567890", "10.1334567"),
]


@pytest.fixture
def mars_payload():
    """Captured-style Horizons text response for Mars, 2025-03-10 14:00-15:00 UT."""
    return make_horizons_text(MARS_ROWS)


@pytest.fixture
def mars_json_payload(mars_payload):
    """The same response wrapped in the Horizons JSON envelope."""
    return json.dumps({
        "signature": {"source": "NASA/JPL Horizons API", "version": "1.2"},
        "result": mars_payload
    })


@pytest.fixture
def horizons_text():
    return make_horizons_text


@pytest.fixture
def bucket_14z():
    return datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock for TTL tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self, clock: Optional["MonotonicClock"] = None):
        self.delays: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.value += seconds


class MonotonicClock:
    def __init__(self, value: float = 1000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def fake_clock(bucket_14z):
    return FakeClock(bucket_14z + timedelta(minutes=5))


@pytest.fixture
def monotonic_clock():
    return MonotonicClock()


@pytest.fixture
def recording_sleep(monotonic_clock):
    return RecordingSleep(monotonic_clock)


@pytest.fixture
def make_client(recording_sleep, monotonic_clock):
    """Factory for a HorizonsClient served by an httpx.MockTransport handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> HorizonsClient:
        options = {
            "base_url": "https://horizons.test/api/horizons.api",
            "transport": httpx.MockTransport(handler),
            "sleep": recording_sleep,
            "clock": monotonic_clock,
        }
        options.update(overrides)
        return HorizonsClient(**options)

    return _make


class StubHorizonsClient:
    """Stands in for HorizonsClient in orchestrator and precompute tests."""

    def __init__(self, positions: Optional[Dict[Planet, PlanetPosition]] = None, error: Optional[Exception] = None):
        self.positions = positions or {}
        self.error = error
        self.calls: List[Tuple[Planet, datetime]] = []

    async def fetch(self, planet, hour_bucket):
        planet = Planet(planet)
        self.calls.append((planet, hour_bucket))
        if self.error is not None:
            raise self.error
        if planet not in self.positions:
            raise AcquisitionError(f"No stub position for {planet.value}", "SERVICE.ERROR")
        return self.positions[planet]


class RecordingSink(MetricsSink):
    name = "recording"

    def __init__(self):
        self.records: List[MetricRecord] = []

    def emit(self, record: MetricRecord) -> None:
        self.records.append(record)


class FailingSink(MetricsSink):
    name = "failing"

    def __init__(self):
        self.attempts = 0

    def emit(self, record: MetricRecord) -> None:
        self.attempts += 1
        raise RuntimeError("metrics database unreachable")


@pytest.fixture
def sample_positions():
    """Positions for all seven planets at 2025-03-10 14:00 UT (approximate)."""
    return {
        Planet.SUN: PlanetPosition(planet_id=Planet.SUN, longitude=350.12, latitude=0.0, speed=0.998, distance=0.9934),
        Planet.MOON: PlanetPosition(planet_id=Planet.MOON, longitude=118.4, latitude=-2.1, speed=12.9, distance=0.0026),
        Planet.MERCURY: PlanetPosition(planet_id=Planet.MERCURY, longitude=9.8, latitude=2.5, speed=0.61, distance=0.62),
        Planet.VENUS: PlanetPosition(planet_id=Planet.VENUS, longitude=8.7, latitude=8.1, speed=-0.48, distance=0.29),
        Planet.MARS: PlanetPosition(planet_id=Planet.MARS, longitude=103.7512345, latitude=3.1234567, speed=0.18, distance=0.80123456789),
        Planet.JUPITER: PlanetPosition(planet_id=Planet.JUPITER, longitude=73.2, latitude=-0.5, speed=0.09, distance=5.02),
        Planet.SATURN: PlanetPosition(planet_id=Planet.SATURN, longitude=355.9, latitude=-2.0, speed=0.12, distance=10.44),
    }


@pytest.fixture
def stub_client(sample_positions):
    return StubHorizonsClient(sample_positions)


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return FailingSink()

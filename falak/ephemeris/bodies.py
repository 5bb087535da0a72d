# falak/ephemeris/bodies.py
from enum import Enum
from typing import Union

from pydantic import BaseModel, Field, computed_field


class Planet(str, Enum):
    SUN = "sun"
    MOON = "moon"
    MERCURY = "mercury"
    VENUS = "venus"
    MARS = "mars"
    JUPITER = "jupiter"
    SATURN = "saturn"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


# JPL Horizons COMMAND codes (geocentric observer queries)
HORIZONS_CODES = {
    Planet.SUN: "10",
    Planet.MOON: "301",
    Planet.MERCURY: "199",
    Planet.VENUS: "299",
    Planet.MARS: "499",
    Planet.JUPITER: "599",
    Planet.SATURN: "699",
}

ZODIAC_SIGNS = [
    "aries", "taurus", "gemini", "cancer",
    "leo", "virgo", "libra", "scorpio",
    "sagittarius", "capricorn", "aquarius", "pisces",
]

RETROGRADE_SPEED_THRESHOLD = -0.01


def parse_planet(value: Union[str, Planet]) -> Planet:
    """
    Resolve a planet name to a Planet, case-insensitively.

    Raises:
        ValueError: If the name is not one of the seven classical planets
    """
    if isinstance(value, Planet):
        return value
    try:
        return Planet(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in Planet)
        raise ValueError(f"Unknown planet: {value}. Must be one of {allowed}")


def normalize_longitude(longitude: float) -> float:
    """Fold any longitude into [0, 360)."""
    normalized = longitude % 360.0
    # -1e-20 % 360.0 rounds to 360.0
    if normalized >= 360.0:
        normalized = 0.0
    return normalized


def zodiac_sign_index(longitude: float) -> int:
    return int(normalize_longitude(longitude) // 30.0)


def zodiac_sign(longitude: float) -> str:
    return ZODIAC_SIGNS[zodiac_sign_index(longitude)]


def zodiac_degree(longitude: float) -> float:
    """Offset within the sign, always in [0, 30)."""
    return normalize_longitude(longitude) - zodiac_sign_index(longitude) * 30.0


def signed_delta(from_lon: float, to_lon: float) -> float:
    """
    Shortest signed angular step from one longitude to another.

    Result lies in (-180, 180], so 359.9 -> 0.2 is +0.3, not -359.7.
    """
    delta = (to_lon - from_lon) % 360.0
    if delta > 180.0:
        delta -= 360.0
    return delta


def angular_separation(lon_a: float, lon_b: float) -> float:
    """Unsigned separation between two longitudes, in [0, 180]."""
    return abs(signed_delta(lon_a, lon_b))


class PlanetPosition(BaseModel):
    """
    One body's geocentric ecliptic state at an hour-bucketed instant.

    Sign, degree and retrograde flag are derived on access and never
    stored, so they cannot disagree with the longitude.
    """
    planet_id: Planet
    longitude: float = Field(..., description="Ecliptic longitude in degrees")
    latitude: float = Field(..., description="Ecliptic latitude in degrees")
    speed: float = Field(0.0, description="Longitude rate in degrees/day")
    distance: float = Field(0.0, description="Distance from Earth in AU")

    @computed_field
    @property
    def zodiac_sign(self) -> str:
        return zodiac_sign(self.longitude)

    @computed_field
    @property
    def zodiac_degree(self) -> float:
        return zodiac_degree(self.longitude)

    @computed_field
    @property
    def is_retrograde(self) -> bool:
        return self.speed < RETROGRADE_SPEED_THRESHOLD

    def stored_fields(self) -> dict:
        """Fields persisted by cache backends (derived values excluded)."""
        return {
            "planet_id": self.planet_id.value,
            "longitude": self.longitude,
            "latitude": self.latitude,
            "speed": self.speed,
            "distance": self.distance,
        }

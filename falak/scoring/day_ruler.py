"""
Day-ruler analysis.

Each weekday is ruled by one classical planet. The ruler's strength shifts
the aggregate daily score by a fixed number of points.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Mapping, Optional

from ..ephemeris.bodies import Planet, PlanetPosition
from .strength import StrengthResult, quality_band, score

# datetime.weekday(): Monday == 0
DAY_RULERS = {
    0: Planet.MOON,
    1: Planet.MARS,
    2: Planet.MERCURY,
    3: Planet.JUPITER,
    4: Planet.VENUS,
    5: Planet.SATURN,
    6: Planet.SUN,
}

DAY_NAMES = {
    Planet.SUN: "Sunday",
    Planet.MOON: "Monday",
    Planet.MARS: "Tuesday",
    Planet.MERCURY: "Wednesday",
    Planet.JUPITER: "Thursday",
    Planet.VENUS: "Friday",
    Planet.SATURN: "Saturday",
}

# (minimum strength, points)
IMPACT_STEPS = [
    (80, 15),
    (60, 10),
    (40, 5),
    (20, -5),
]


@dataclass
class DayRulerAnalysis:
    planet: Planet
    day_name: str
    strength: int
    quality: str
    impact_points: int
    power_analysis: StrengthResult

    def to_dict(self) -> Dict[str, object]:
        return {
            "planet": self.planet.value,
            "day_name": self.day_name,
            "strength": self.strength,
            "quality": self.quality,
            "impact_points": self.impact_points,
            "power_analysis": self.power_analysis.to_dict(),
        }


def day_ruling_planet(moment: datetime) -> Planet:
    """Ruler of the calendar day of ``moment`` in its own timezone."""
    return DAY_RULERS[moment.weekday()]


def impact(ruler_strength: float) -> int:
    """
    Points added to the daily score for a ruler of the given strength.

    Examples:
        >>> impact(80), impact(79), impact(19)
        (15, 10, -15)
    """
    for threshold, points in IMPACT_STEPS:
        if ruler_strength >= threshold:
            return points
    return -15


def analyze_day_ruler(
    moment: datetime,
    positions: Mapping[Planet, PlanetPosition],
    sun_longitude: Optional[float] = None
) -> DayRulerAnalysis:
    """
    Score the day's ruling planet.

    Args:
        moment: Local datetime whose weekday selects the ruler
        positions: Positions keyed by planet; must include the ruler
        sun_longitude: Sun's longitude; taken from ``positions`` when omitted

    Raises:
        ValueError: If the ruler's or the Sun's position is missing
    """
    if sun_longitude is None:
        sun = positions.get(Planet.SUN)
        if sun is None:
            raise ValueError("Sun position required for day ruler analysis")
        sun_longitude = sun.longitude

    planet = day_ruling_planet(moment)
    position = positions.get(planet)
    if position is None:
        raise ValueError(f"Position data for {planet.value} not found")

    result = score(position, sun_longitude)
    return DayRulerAnalysis(
        planet=planet,
        day_name=DAY_NAMES[planet],
        strength=result.final_power,
        quality=quality_band(result.final_power),
        impact_points=impact(result.final_power),
        power_analysis=result,
    )

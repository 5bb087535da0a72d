import math
from dataclasses import dataclass
from typing import Dict

from ..ephemeris.bodies import normalize_longitude

PHASE_NAMES = [
    "new",
    "waxing-crescent",
    "first-quarter",
    "waxing-gibbous",
    "full",
    "waning-gibbous",
    "last-quarter",
    "waning-crescent",
]

SYNODIC_DEGREES_PER_LUNAR_DAY = 12.0


@dataclass(frozen=True)
class MoonPhase:
    phase: str
    elongation: float
    illumination: int
    is_waxing: bool
    lunar_day: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "phase": self.phase,
            "elongation": round(self.elongation, 4),
            "illumination": self.illumination,
            "is_waxing": self.is_waxing,
            "lunar_day": self.lunar_day,
        }


def moon_phase(moon_longitude: float, sun_longitude: float) -> MoonPhase:
    """
    Lunar phase from the Sun-Moon elongation.

    The circle is split into eight 45° phases centred on the principal
    phases, so 'new' covers elongations within 22.5° of conjunction.
    Lunar day counts 12° steps of elongation, 1 through 30.
    """
    elongation = normalize_longitude(moon_longitude - sun_longitude)
    index = int(((elongation + 22.5) % 360.0) // 45.0)
    illumination = int(math.floor(50.0 * (1.0 - math.cos(math.radians(elongation))) + 0.5))

    return MoonPhase(
        phase=PHASE_NAMES[index],
        elongation=elongation,
        illumination=illumination,
        is_waxing=elongation < 180.0,
        lunar_day=int(elongation // SYNODIC_DEGREES_PER_LUNAR_DAY) + 1,
    )

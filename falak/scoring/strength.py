"""
Planetary strength scoring.

Combines four classical factors multiplicatively into a 0-100 power score:
degree within the sign, essential dignity, proximity to the Sun
(combustion) and retrograde motion. Every function here is pure.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..ephemeris.bodies import Planet, PlanetPosition, angular_separation, zodiac_degree, zodiac_sign

DOMICILE = "Domicile"
EXALTED = "Exalted"
DETRIMENT = "Detriment"
FALL = "Fall"
NEUTRAL = "Neutral"

COMBUST_ORB = 8.0
BEAMS_ORB = 15.0

# own signs, exaltation, detriment signs, fall
ESSENTIAL_DIGNITIES: Dict[Planet, Dict[str, object]] = {
    Planet.SUN: {"own": ["leo"], "exaltation": "aries", "detriment": ["aquarius"], "fall": "libra"},
    Planet.MOON: {"own": ["cancer"], "exaltation": "taurus", "detriment": ["capricorn"], "fall": "scorpio"},
    Planet.MERCURY: {"own": ["gemini", "virgo"], "exaltation": "virgo", "detriment": ["sagittarius", "pisces"], "fall": "pisces"},
    Planet.VENUS: {"own": ["taurus", "libra"], "exaltation": "pisces", "detriment": ["aries", "scorpio"], "fall": "virgo"},
    Planet.MARS: {"own": ["aries", "scorpio"], "exaltation": "capricorn", "detriment": ["libra", "taurus"], "fall": "cancer"},
    Planet.JUPITER: {"own": ["sagittarius", "pisces"], "exaltation": "cancer", "detriment": ["gemini", "virgo"], "fall": "capricorn"},
    Planet.SATURN: {"own": ["capricorn", "aquarius"], "exaltation": "libra", "detriment": ["cancer", "leo"], "fall": "aries"},
}

DIGNITY_MODIFIERS = {
    DOMICILE: 1.3,
    EXALTED: 1.4,
    DETRIMENT: 0.7,
    FALL: 0.5,
    NEUTRAL: 1.0,
}

# (upper bound exclusive, strength, quality)
DEGREE_BANDS = [
    (6.0, 0.4, "Weak"),
    (15.0, 0.7, "Moderate"),
    (26.0, 1.0, "Strong"),
    (30.0, 0.6, "Weakening"),
]

QUALITY_BANDS = [
    (80, "Excellent"),
    (60, "Good"),
    (40, "Moderate"),
    (20, "Weak"),
]


@dataclass(frozen=True)
class DegreeStrength:
    strength: float
    quality: str
    description: str


@dataclass(frozen=True)
class Dignity:
    status: str
    modifier: float
    description: str


@dataclass(frozen=True)
class Combustion:
    status: str  # none | beams | combust
    modifier: float
    distance_from_sun: float
    description: str

    @property
    def is_combust(self) -> bool:
        return self.status == "combust"


@dataclass
class StrengthResult:
    """Derived strength of one position. Never persisted."""
    planet: Planet
    sign: str
    degree: float
    final_power: int
    dignity_status: str
    degree_strength: float
    combustion_status: str
    is_retrograde: bool
    dignity_modifier: float
    combustion_modifier: float
    retrograde_modifier: float
    recommendations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suitability: Dict[str, bool] = field(default_factory=lambda: {"outer": True, "inner": True})

    @property
    def quality(self) -> str:
        return quality_band(self.final_power)

    def to_dict(self) -> Dict[str, object]:
        return {
            "planet": self.planet.value,
            "sign": self.sign,
            "degree": round(self.degree, 4),
            "final_power": self.final_power,
            "quality": self.quality,
            "dignity_status": self.dignity_status,
            "degree_strength": self.degree_strength,
            "combustion_status": self.combustion_status,
            "is_retrograde": self.is_retrograde,
            "modifiers": {
                "dignity": self.dignity_modifier,
                "combustion": self.combustion_modifier,
                "retrograde": self.retrograde_modifier,
            },
            "recommendations": list(self.recommendations),
            "warnings": list(self.warnings),
            "suitability": dict(self.suitability),
        }


def degree_strength(degree: float) -> DegreeStrength:
    """
    Strength of a body from how far it has travelled through its sign.

    Args:
        degree: Offset within the sign; values outside [0, 30) are folded

    Returns:
        DegreeStrength with a 0-1 multiplier
    """
    normalized = degree % 30.0
    for upper, strength, quality in DEGREE_BANDS:
        if normalized < upper:
            break

    descriptions = {
        "Weak": f"Planet just entered sign ({normalized:.1f}°) - not yet settled",
        "Moderate": f"Planet gaining strength ({normalized:.1f}°)",
        "Strong": f"Planet at peak power ({normalized:.1f}°)",
        "Weakening": f"Planet preparing to leave sign ({normalized:.1f}°) - good for finishing, not starting",
    }
    return DegreeStrength(strength, quality, descriptions[quality])


def essential_dignity(planet: Planet, sign: str) -> Dignity:
    """
    Classify a planet's sign against the rulership table.

    Domicile is checked before exaltation, so Mercury in Virgo is Domicile.
    """
    dignities = ESSENTIAL_DIGNITIES[planet]
    sign = sign.lower()
    name = planet.display_name

    if sign in dignities["own"]:
        status, description = DOMICILE, f"{name} in its own sign - very strong and comfortable"
    elif sign == dignities["exaltation"]:
        status, description = EXALTED, f"{name} exalted - at peak power and honor"
    elif sign in dignities["detriment"]:
        status, description = DETRIMENT, f"{name} in opposing sign - weakened and uncomfortable"
    elif sign == dignities["fall"]:
        status, description = FALL, f"{name} in fall - very weak, struggles to express"
    else:
        status, description = NEUTRAL, f"{name} in neutral territory - average strength"

    return Dignity(status, DIGNITY_MODIFIERS[status], description)


def combustion(planet: Planet, longitude: float, sun_longitude: float) -> Combustion:
    """Weakening from proximity to the Sun. The Sun and Moon are exempt."""
    if planet in (Planet.SUN, Planet.MOON):
        return Combustion("none", 1.0, 0.0, f"{planet.display_name} not subject to combustion")

    distance = angular_separation(longitude, sun_longitude)
    name = planet.display_name

    if distance < COMBUST_ORB:
        return Combustion("combust", 0.5, distance, f"{name} too close to Sun ({distance:.1f}°) - power severely weakened")
    if distance < BEAMS_ORB:
        return Combustion("beams", 0.75, distance, f"{name} under Sun's beams ({distance:.1f}°) - moderately weakened")
    return Combustion("none", 1.0, distance, f"{name} clear of Sun ({distance:.1f}°)")


def quality_band(final_power: float) -> str:
    """Presentation band for a 0-100 score."""
    for threshold, label in QUALITY_BANDS:
        if final_power >= threshold:
            return label
    return "Very Weak"


def score(position: PlanetPosition, sun_longitude: float) -> StrengthResult:
    """
    Score a position against the Sun's longitude.

    Args:
        position: Planet position (fresh or cached)
        sun_longitude: Sun's ecliptic longitude for the same instant

    Returns:
        StrengthResult with final_power in [0, 100]
    """
    planet = position.planet_id
    sign = zodiac_sign(position.longitude)
    degree = zodiac_degree(position.longitude)

    degree_info = degree_strength(degree)
    dignity_info = essential_dignity(planet, sign)
    combustion_info = combustion(planet, position.longitude, sun_longitude)
    retrograde_modifier = 1.0  # retrograde changes suitability, not power

    raw = degree_info.strength * dignity_info.modifier * combustion_info.modifier * retrograde_modifier
    final_power = int(math.floor(max(0.0, min(1.0, raw)) * 100 + 0.5))

    recommendations: List[str] = []
    warnings: List[str] = []
    outer = True

    if degree_info.strength < 0.6:
        warnings.append(degree_info.description)
        if degree_info.quality == "Weak":
            recommendations.append(f"Wait {math.ceil((6 - degree) * 2)} hours for planet to settle past 6°")
    elif degree_info.quality == "Strong":
        recommendations.append("Excellent degree - planet at peak power")

    if dignity_info.status == FALL:
        warnings.append(dignity_info.description)
        recommendations.append("Avoid this planet - choose different hour or day")
        outer = False
    elif dignity_info.status == DETRIMENT:
        warnings.append(dignity_info.description)
        recommendations.append("Not ideal - better alternatives available")
        outer = False
    elif dignity_info.status == EXALTED:
        recommendations.append(f"{planet.display_name} exalted in {sign.capitalize()} - highly recommended")
    elif dignity_info.status == DOMICILE:
        recommendations.append(f"{planet.display_name} in own sign - very favorable")

    if combustion_info.status != "none":
        warnings.append(combustion_info.description)
        if combustion_info.is_combust:
            outer = False

    if position.is_retrograde:
        warnings.append("Planet retrograde")
        recommendations.append("Better for inner work, reflection, revision - avoid new material projects")
        outer = False

    return StrengthResult(
        planet=planet,
        sign=sign,
        degree=degree,
        final_power=final_power,
        dignity_status=dignity_info.status,
        degree_strength=degree_info.strength,
        combustion_status=combustion_info.status,
        is_retrograde=position.is_retrograde,
        dignity_modifier=dignity_info.modifier,
        combustion_modifier=combustion_info.modifier,
        retrograde_modifier=retrograde_modifier,
        recommendations=recommendations,
        warnings=warnings,
        suitability={"outer": outer, "inner": True},
    )


def select_best(results: Iterable[StrengthResult], work_type: str = "outer") -> Optional[StrengthResult]:
    """Strongest result suitable for the work type, or None."""
    if work_type not in ("outer", "inner"):
        raise ValueError(f"Unknown work type: {work_type}")

    suitable = [r for r in results if work_type == "inner" or r.suitability["outer"]]
    if not suitable:
        return None
    return max(suitable, key=lambda r: r.final_power)

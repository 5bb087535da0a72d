"""
Parser for JPL Horizons observer-table text output.

The Horizons API answers either with raw text or with a JSON envelope
``{"result": "<text>"}``. The ephemeris rows sit between the ``$$SOE`` and
``$$EOE`` sentinel lines; everything outside them is header/footer noise.
With ``CSV_FORMAT=YES`` and ``QUANTITIES=31,20`` each row reads::

    2025-Mar-10 14:00, , , 101.2345678, 1.2345678, 0.987654321, -2.3456789,

i.e. timestamp, solar/lunar presence flags (usually blank), ecliptic
longitude, ecliptic latitude, distance (AU) and distance rate (km/s).
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from dateutil import parser as date_parser

from ..ephemeris.bodies import Planet, PlanetPosition, parse_planet, signed_delta
from ..errors import ParseError

logger = logging.getLogger(__name__)

SOE_MARKER = "$$SOE"
EOE_MARKER = "$$EOE"

TIMESTAMP_COL = 0
LONGITUDE_COL = 3
LATITUDE_COL = 4
DISTANCE_COL = 5
DISTANCE_RATE_COL = 6


@dataclass
class EphemerisRow:
    timestamp: Optional[datetime]
    longitude: float
    latitude: float
    distance: float
    distance_rate: Optional[float]


def unwrap_payload(body: str) -> str:
    """
    Return the text result, unwrapping a ``{"result": ...}`` envelope if present.

    Raises:
        ParseError: If the envelope reports an upstream error instead of a result
    """
    stripped = body.strip()
    if not stripped.startswith("{"):
        return body

    try:
        envelope = json.loads(stripped)
    except json.JSONDecodeError:
        return body

    if not isinstance(envelope, dict):
        return body
    if isinstance(envelope.get("result"), str):
        return envelope["result"]
    if "error" in envelope:
        raise ParseError(f"Horizons reported an error: {str(envelope['error'])[:200]}")
    return body


def extract_data_lines(text: str) -> List[str]:
    """
    Return the non-blank lines between the start/end ephemeris markers.

    Raises:
        ParseError: If either marker is missing or no data line is present
    """
    soe_index = text.find(SOE_MARKER)
    if soe_index == -1:
        raise ParseError(f"Missing {SOE_MARKER} marker in Horizons response")

    eoe_index = text.find(EOE_MARKER, soe_index + len(SOE_MARKER))
    if eoe_index == -1:
        raise ParseError(f"Missing {EOE_MARKER} marker in Horizons response")

    section = text[soe_index + len(SOE_MARKER):eoe_index]
    lines = [line.strip() for line in section.splitlines() if line.strip()]

    if not lines:
        raise ParseError("No ephemeris rows between markers")
    return lines


def _required_float(parts: List[str], index: int, name: str, line: str) -> float:
    if index >= len(parts) or not parts[index]:
        raise ParseError(f"Missing {name} column in row: {line[:120]}")
    try:
        value = float(parts[index])
    except ValueError:
        raise ParseError(f"Non-numeric {name} '{parts[index]}' in row: {line[:120]}")
    if not math.isfinite(value):
        raise ParseError(f"Non-finite {name} in row: {line[:120]}")
    return value


def _optional_float(parts: List[str], index: int) -> Optional[float]:
    if index >= len(parts) or not parts[index]:
        return None
    try:
        value = float(parts[index])
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _parse_timestamp(raw: str) -> Optional[datetime]:
    raw = raw.strip()
    if raw.startswith("B.C."):
        return None
    if raw.startswith("A.D."):
        raw = raw[len("A.D."):].strip()
    if not raw:
        return None
    try:
        return date_parser.parse(raw)
    except (ValueError, OverflowError):
        return None


def parse_row(line: str) -> EphemerisRow:
    """Parse one CSV ephemeris row. Longitude and latitude are mandatory."""
    parts = [p.strip() for p in line.split(",")]

    longitude = _required_float(parts, LONGITUDE_COL, "longitude", line)
    latitude = _required_float(parts, LATITUDE_COL, "latitude", line)
    distance = _optional_float(parts, DISTANCE_COL)

    return EphemerisRow(
        timestamp=_parse_timestamp(parts[TIMESTAMP_COL]),
        longitude=longitude,
        latitude=latitude,
        distance=distance if distance is not None else 0.0,
        distance_rate=_optional_float(parts, DISTANCE_RATE_COL),
    )


def compute_speed(first: EphemerisRow, second: EphemerisRow, default_step_hours: float = 1.0) -> float:
    """
    Longitude rate in degrees/day between two consecutive rows.

    The delta is folded onto the shortest arc before scaling, so a crossing of
    the 0/360 boundary reads as a small step. The row timestamps give the step
    when both parse; otherwise the requested step size is assumed.
    """
    step_days = default_step_hours / 24.0
    if first.timestamp and second.timestamp:
        elapsed = (second.timestamp - first.timestamp).total_seconds()
        if elapsed > 0:
            step_days = elapsed / 86400.0

    return signed_delta(first.longitude, second.longitude) / step_days


def parse_horizons_response(
    body: str,
    planet: Union[str, Planet],
    default_step_hours: float = 1.0
) -> PlanetPosition:
    """
    Turn a Horizons response body into a PlanetPosition.

    Args:
        body: Raw response body (text or JSON envelope)
        planet: Body the query was made for
        default_step_hours: Step used when row timestamps are unusable

    Returns:
        Position from the first row, with speed derived from the first two rows
        (0.0 when only one row is present)

    Raises:
        ParseError: On missing markers, empty data or malformed rows
    """
    text = unwrap_payload(body)
    lines = extract_data_lines(text)

    first = parse_row(lines[0])
    speed = 0.0
    if len(lines) >= 2:
        second = parse_row(lines[1])
        speed = compute_speed(first, second, default_step_hours)
    else:
        logger.debug("Single ephemeris row returned, speed defaults to 0")

    return PlanetPosition(
        planet_id=parse_planet(planet),
        longitude=first.longitude,
        latitude=first.latitude,
        speed=speed,
        distance=first.distance,
    )

"""
Date parsing utilities for the Falak Engine.

Provides flexible parsing of request timestamps using dateutil, timezone
resolution for naive inputs, and the hour bucketing used as the cache key.
"""

from dateutil import parser, tz
from datetime import datetime, timezone, tzinfo


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ValueError: If the name is unknown
    """
    if not name or name.upper() in ("UTC", "Z"):
        return timezone.utc
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Unknown timezone '{name}'")
    return zone


def parse_request_datetime(dt_str: str, timezone_name: str = "UTC") -> datetime:
    """
    Parse an ISO-8601-ish timestamp into an aware UTC datetime.

    Timestamps without an offset are read as local time in ``timezone_name``.

    Args:
        dt_str: Timestamp string, e.g. '2025-03-10T14:00:00Z'
        timezone_name: IANA zone applied to naive timestamps

    Returns:
        Aware datetime in UTC

    Raises:
        ValueError: If the string cannot be parsed, is out of range, or the
            timezone is unknown

    Examples:
        >>> parse_request_datetime("2025-03-10T14:27:00Z")
        datetime.datetime(2025, 3, 10, 14, 27, tzinfo=datetime.timezone.utc)
    """
    if not dt_str or not str(dt_str).strip():
        raise ValueError("Empty datetime string")

    # The zone is checked even when the timestamp carries its own offset
    zone = resolve_timezone(timezone_name)

    dt_str = str(dt_str).strip()

    try:
        dt = parser.isoparse(dt_str)
    except ValueError:
        try:
            dt = parser.parse(dt_str)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Unable to parse datetime '{dt_str}': {e}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone)

    dt = dt.astimezone(timezone.utc)

    # Horizons serves roughly 1600-2500 for the major planets
    if dt.year < 1600 or dt.year > 2500:
        raise ValueError(f"Year {dt.year} outside supported range (1600-2500)")

    return dt


def truncate_to_hour(moment: datetime) -> datetime:
    """
    Hour bucket for a timestamp: UTC, minutes/seconds/microseconds zeroed.

    Naive datetimes are taken as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    return moment.replace(minute=0, second=0, microsecond=0)


def isoformat_z(moment: datetime) -> str:
    """ISO 8601 with a Z suffix, e.g. '2025-03-10T14:00:00Z'."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + "Z"

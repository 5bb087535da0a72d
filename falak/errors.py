import asyncio
import logging
from typing import Optional, Dict, Any

import httpx

logger = logging.getLogger(__name__)


class FalakError(Exception):
    """
    Base error for the ephemeris pipeline.

    Carries an HTTP-equivalent status and a dotted error code following the
    CATEGORY.SPECIFIC_ERROR pattern.
    """

    status_code = 500
    default_code = "SERVER.ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "cache_status": "ERROR",
            "code": self.code,
        }


class ValidationError(FalakError):
    """Missing or malformed request fields. Never retried."""

    status_code = 400
    default_code = "INPUT.INVALID"


class AcquisitionError(FalakError):
    """External ephemeris service unreachable, timed out or unparseable after retries."""

    status_code = 500
    default_code = "SERVICE.ERROR"


class ParseError(AcquisitionError):
    """Ephemeris payload could not be turned into a position."""

    default_code = "PARSE.FAILED"


class CacheError(FalakError):
    """Cache store unreachable or rejected a write. Recovered locally."""

    status_code = 503
    default_code = "CACHE.UNAVAILABLE"


class MetricError(FalakError):
    """Metrics sink failure. Always swallowed."""

    default_code = "METRICS.SINK_FAILED"


def bad_request(code: str, detail: str):
    """
    Raise a 400-equivalent validation error.

    Args:
        code: Error code following CATEGORY.SPECIFIC_ERROR pattern
        detail: Specific details about this error instance
    """
    logger.warning(f"Bad request: {code} - {detail}")
    raise ValidationError(detail, code)


def map_http_client_error(err: Exception, service: str) -> AcquisitionError:
    """
    Classify a failed call to an external service.

    Args:
        err: Exception from the HTTP client or payload parser
        service: Name of the service that failed

    Returns:
        AcquisitionError carrying the original message and a classified code
    """
    if isinstance(err, AcquisitionError):
        return err

    error_msg = str(err) or err.__class__.__name__

    if isinstance(err, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        code = "SERVICE.TIMEOUT"
        message = f"{service} request timed out: {error_msg}"
    elif isinstance(err, (httpx.ConnectError, httpx.NetworkError)):
        code = "SERVICE.UNAVAILABLE"
        message = f"Could not connect to {service}: {error_msg}"
    elif isinstance(err, httpx.HTTPStatusError):
        code = "SERVICE.ERROR"
        message = f"{service} returned HTTP {err.response.status_code}"
    else:
        code = "SERVICE.ERROR"
        message = f"Error communicating with {service}: {error_msg[:200]}"

    return AcquisitionError(message, code)

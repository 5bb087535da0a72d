"""
Structured JSON logging for the Falak Engine.

Provides consistent, structured logging with request correlation,
latency categories, and pipeline context for observability.
"""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Dict, Any, Optional
from datetime import datetime, timezone


# Context variable for request correlation
request_id_context: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName'
}


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format with:
    - Standard fields: timestamp, level, logger, message
    - Request correlation: request_id
    - Any extra fields passed through ``extra=``
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_context.get()
        if request_id:
            log_entry["request_id"] = request_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS and not key.startswith('_'):
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, separators=(',', ':'), default=str)


class StructuredLogger:
    """
    Structured logger for ephemeris pipeline events.

    Each method logs one business event with a stable ``operation`` field
    so log queries do not depend on message wording.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def position_served(
        self,
        planet: str,
        hour_bucket: str,
        cache_status: str,
        duration_ms: float
    ):
        """Log a successfully served position."""
        self.logger.info(
            f"Position served ({cache_status})",
            extra={
                "operation": "position_served",
                "planet": planet,
                "hour_bucket": hour_bucket,
                "cache_status": cache_status,
                "duration_ms": round(duration_ms, 2),
                "performance_category": self._categorize_performance(duration_ms)
            }
        )

    def position_error(
        self,
        error_code: str,
        message: str,
        planet: Optional[str],
        duration_ms: float
    ):
        """Log a failed position request."""
        self.logger.error(
            f"Position request failed: {message}",
            extra={
                "operation": "position_error",
                "error_code": error_code,
                "planet": planet,
                "duration_ms": round(duration_ms, 2)
            }
        )

    def acquisition_attempt_failed(
        self,
        planet: str,
        attempt: int,
        max_attempts: int,
        error: str,
        retry_in_seconds: Optional[float] = None
    ):
        """Log one failed upstream attempt."""
        self.logger.warning(
            f"Horizons attempt {attempt}/{max_attempts} failed for {planet}",
            extra={
                "operation": "acquisition_attempt_failed",
                "planet": planet,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "error_message": error,
                "retry_in_seconds": retry_in_seconds
            }
        )

    def acquisition_completed(self, planet: str, attempts: int, duration_ms: float):
        """Log a successful upstream fetch."""
        self.logger.info(
            f"Horizons fetch complete for {planet}",
            extra={
                "operation": "acquisition_completed",
                "planet": planet,
                "attempts": attempts,
                "duration_ms": round(duration_ms, 2),
                "performance_category": self._categorize_performance(duration_ms)
            }
        )

    def acquisition_exhausted(self, planet: str, attempts: int, error: str):
        """Log a fetch that failed on every attempt."""
        self.logger.error(
            f"Horizons retries exhausted for {planet}",
            extra={
                "operation": "acquisition_exhausted",
                "planet": planet,
                "attempts": attempts,
                "error_message": error
            }
        )

    def cache_degraded(self, operation: str, planet: str, hour_bucket: str, error: str):
        """Log a cache read or write that failed and was recovered locally."""
        self.logger.warning(
            f"Cache {operation} failed, continuing without cache",
            extra={
                "operation": f"cache_{operation}_degraded",
                "planet": planet,
                "hour_bucket": hour_bucket,
                "error_message": error
            }
        )

    def cache_operation(self, operation: str, key: str, size: Optional[int] = None):
        """Log cache operations."""
        self.logger.debug(
            f"Cache {operation}",
            extra={
                "operation": f"cache_{operation}",
                "key": key,
                "cache_size": size
            }
        )

    def metric_emit_failed(self, sink: str, error: str):
        """Log a metric that could not be written."""
        self.logger.warning(
            "Metric emission failed",
            extra={
                "operation": "metric_emit_failed",
                "sink": sink,
                "error_message": error
            }
        )

    def startup_event(
        self,
        component: str,
        status: str,  # "starting", "ready", "error", "disabled", "stopped"
        duration_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log application startup events."""
        level = logging.ERROR if status == "error" else logging.INFO
        self.logger.log(
            level,
            f"Startup: {component} {status}",
            extra={
                "operation": "startup",
                "component": component,
                "status": status,
                "duration_ms": round(duration_ms, 2) if duration_ms else None,
                **(details or {})
            }
        )

    @staticmethod
    def _categorize_performance(duration_ms: float) -> str:
        """Categorize latency for easy filtering."""
        if duration_ms < 100:
            return "fast"
        elif duration_ms < 1000:
            return "normal"
        elif duration_ms < 3000:
            return "slow"
        else:
            return "very_slow"


def setup_logging(level: str = "INFO", enable_json: bool = True) -> None:
    """
    Setup structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        enable_json: Whether to use JSON formatting
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[],
        force=True
    )

    console_handler = logging.StreamHandler()

    if enable_json:
        console_handler.setFormatter(JsonFormatter())
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def set_request_context(request_id: Optional[str] = None) -> str:
    """
    Set request context for correlation.

    Args:
        request_id: Optional request ID (generated if not provided)

    Returns:
        The request ID (generated or provided)
    """
    if request_id is None:
        request_id = str(uuid.uuid4())

    request_id_context.set(request_id)
    return request_id


def clear_request_context():
    """Clear request context."""
    request_id_context.set(None)


def get_request_id() -> Optional[str]:
    """Get current request ID from context."""
    return request_id_context.get()


class TimedOperation:
    """Context manager for timing operations with automatic logging."""

    def __init__(self, logger: StructuredLogger, operation_name: str, **context):
        self.logger = logger
        self.operation_name = operation_name
        self.context = context
        self.start_time = None
        self.duration_ms = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is None:
            self.logger.logger.info(
                f"Operation completed: {self.operation_name}",
                extra={
                    "operation": self.operation_name,
                    "duration_ms": round(self.duration_ms, 2),
                    "performance_category": StructuredLogger._categorize_performance(self.duration_ms),
                    **self.context
                }
            )
        else:
            self.logger.logger.error(
                f"Operation failed: {self.operation_name}",
                extra={
                    "operation": self.operation_name,
                    "duration_ms": round(self.duration_ms, 2),
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val) if exc_val else None,
                    **self.context
                }
            )

        return False

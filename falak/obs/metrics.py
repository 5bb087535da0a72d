"""
Prometheus metrics and the advisory metric sink for the Falak Engine.

Every request outcome is described by one MetricRecord handed to a
MetricsSink. Sinks are best-effort: ``emit_safely`` guarantees a sink
failure is logged and never reaches the caller.
"""

from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST
)
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import logging
import time

from ..errors import MetricError
from .logging import StructuredLogger

logger = logging.getLogger(__name__)
business_logger = StructuredLogger(__name__)

# Global metrics registry
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'falak_requests_total',
    'Total number of API requests',
    ['endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'falak_request_duration_seconds',
    'Request duration in seconds',
    ['endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 3.0, 10.0, 30.0, 90.0],
    registry=REGISTRY
)

# Cache metrics
CACHE_LOOKUPS = Counter(
    'falak_cache_lookups_total',
    'Position cache lookups by result',
    ['result'],  # hit, miss, error
    registry=REGISTRY
)

CACHE_WRITES = Counter(
    'falak_cache_writes_total',
    'Position cache writes by outcome',
    ['status'],  # success, failed
    registry=REGISTRY
)

# Acquisition metrics
ACQUISITION_ATTEMPTS = Counter(
    'falak_acquisition_attempts_total',
    'Horizons attempts by outcome',
    ['planet', 'status'],  # success, failed
    registry=REGISTRY
)

ACQUISITION_DURATION = Histogram(
    'falak_acquisition_duration_seconds',
    'Horizons fetch duration including retries',
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 90.0],
    registry=REGISTRY
)

# Scoring metrics
STRENGTH_SCORES = Histogram(
    'falak_strength_final_power',
    'Distribution of computed planetary strength scores',
    ['planet'],
    buckets=[20, 40, 60, 80, 100],
    registry=REGISTRY
)

APP_START_TIME = Gauge(
    'falak_app_start_time_seconds',
    'Unix timestamp when the application started',
    registry=REGISTRY
)


class MetricRecord(BaseModel):
    """One observability event per request outcome."""
    endpoint: str
    cache_hit: bool = False
    cache_source: Optional[str] = None  # "cache", "horizons"
    response_time_ms: float
    status_code: int
    error_message: Optional[str] = None
    request_params: Optional[Dict[str, Any]] = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MetricsSink:
    """Advisory sink interface. Implementations may raise; callers use emit_safely."""

    name = "base"

    def emit(self, record: MetricRecord) -> None:
        raise NotImplementedError


class NullMetricsSink(MetricsSink):
    """Discards every record."""

    name = "none"

    def emit(self, record: MetricRecord) -> None:
        return None


class PrometheusMetricsSink(MetricsSink):
    """Records request outcomes on the Prometheus registry."""

    name = "prometheus"

    def emit(self, record: MetricRecord) -> None:
        REQUEST_COUNT.labels(
            endpoint=record.endpoint,
            status_code=str(record.status_code)
        ).inc()
        REQUEST_DURATION.labels(endpoint=record.endpoint).observe(record.response_time_ms / 1000)


class LoggingMetricsSink(MetricsSink):
    """Writes each record as a structured log line."""

    name = "log"

    def __init__(self, logger_name: str = "falak.metrics"):
        self.logger = logging.getLogger(logger_name)

    def emit(self, record: MetricRecord) -> None:
        self.logger.info(
            "api_call_metric",
            extra={"operation": "api_call_metric", **record.model_dump(mode="json")}
        )


def build_metrics_sink(kind: str) -> MetricsSink:
    sinks = {
        "prometheus": PrometheusMetricsSink,
        "log": LoggingMetricsSink,
        "none": NullMetricsSink,
    }
    if kind not in sinks:
        raise ValueError(f"Unknown metrics sink: {kind}")
    return sinks[kind]()


def emit_safely(sink: MetricsSink, record: MetricRecord) -> bool:
    """
    Emit a record, swallowing and logging any sink failure.

    Returns:
        True if the sink accepted the record
    """
    try:
        sink.emit(record)
        return True
    except Exception as e:
        err = MetricError(f"{sink.name} sink rejected metric: {e}")
        business_logger.metric_emit_failed(sink.name, err.message)
        return False


def record_cache_lookup(result: str) -> None:
    CACHE_LOOKUPS.labels(result=result).inc()


def record_cache_write(success: bool) -> None:
    CACHE_WRITES.labels(status="success" if success else "failed").inc()


def record_acquisition_attempt(planet: str, success: bool) -> None:
    ACQUISITION_ATTEMPTS.labels(planet=planet, status="success" if success else "failed").inc()


def record_acquisition_duration(duration_seconds: float) -> None:
    ACQUISITION_DURATION.observe(duration_seconds)


def record_strength(planet: str, final_power: float) -> None:
    STRENGTH_SCORES.labels(planet=planet).observe(final_power)


def mark_app_start() -> None:
    APP_START_TIME.set(time.time())


def get_metrics_content() -> tuple[str, str]:
    """
    Get Prometheus metrics content for /metrics endpoint.

    Returns:
        Tuple of (content, content_type)
    """
    content = generate_latest(REGISTRY)
    return content.decode('utf-8'), CONTENT_TYPE_LATEST

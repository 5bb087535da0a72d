from pydantic import BaseModel, ConfigDict, field_validator
from typing import List, Optional
import logging
import yaml
import os

logger = logging.getLogger(__name__)


class APIConfig(BaseModel):
    cors_origins: List[str] = []
    workers: int = 4
    cdn_max_age_seconds: int = 1800  # 30 min CDN layer above the service


class HorizonsConfig(BaseModel):
    base_url: str = "https://ssd.jpl.nasa.gov/api/horizons.api"
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    initial_backoff_seconds: float = 1.0
    backoff_factor: float = 2.0
    step_size: str = "1h"
    deadline_seconds: Optional[float] = None  # unbounded beyond attempts x timeout when None

    @field_validator('timeout_seconds')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0 or v > 120:
            raise ValueError("Timeout must be between 0 and 120 seconds")
        return v

    @field_validator('max_attempts')
    @classmethod
    def validate_attempts(cls, v):
        if v < 1:
            raise ValueError("At least one attempt is required")
        return v

    @field_validator('initial_backoff_seconds', 'backoff_factor')
    @classmethod
    def validate_backoff(cls, v):
        if v < 0:
            raise ValueError("Backoff values must not be negative")
        return v

    @field_validator('deadline_seconds')
    @classmethod
    def validate_deadline(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Deadline must be positive")
        return v


class RedisCacheConfig(BaseModel):
    url: str = "redis://redis:6379/0"
    key_prefix: str = "falak:ephemeris"


class CacheConfig(BaseModel):
    backend: str = "memory"  # memory | redis
    ttl_hours: float = 48.0
    cleanup_interval_seconds: float = 3600.0  # 0 disables the background sweep
    redis: RedisCacheConfig = RedisCacheConfig()

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        allowed = ["memory", "redis"]
        if v not in allowed:
            raise ValueError(f"Invalid cache backend: {v}. Must be one of {allowed}")
        return v

    @field_validator('ttl_hours')
    @classmethod
    def validate_ttl(cls, v):
        if v <= 0:
            raise ValueError("Cache TTL must be positive")
        return v


class MetricsConfig(BaseModel):
    sink: str = "prometheus"  # prometheus | log | none

    @field_validator('sink')
    @classmethod
    def validate_sink(cls, v):
        allowed = ["prometheus", "log", "none"]
        if v not in allowed:
            raise ValueError(f"Invalid metrics sink: {v}. Must be one of {allowed}")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_format: bool = True

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if v.upper() not in allowed:
            raise ValueError(f"Invalid log level: {v}. Must be one of {allowed}")
        return v.upper()


class PrecomputeConfig(BaseModel):
    hours_ahead: int = 48
    batch_pause_seconds: float = 1.0


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")  # Prevent unexpected config keys

    api: APIConfig = APIConfig()
    horizons: HorizonsConfig = HorizonsConfig()
    cache: CacheConfig = CacheConfig()
    metrics: MetricsConfig = MetricsConfig()
    logging: LoggingConfig = LoggingConfig()
    precompute: PrecomputeConfig = PrecomputeConfig()


def load_config(path: str = "config.yaml") -> AppConfig:
    """Load configuration from YAML file with environment variable overrides."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.info(f"Config file {path} not found, using defaults")
        data = {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file {path}: {e}")

    env_overrides = {}

    # API overrides
    if "CORS_ORIGINS" in os.environ:
        env_overrides.setdefault("api", {})["cors_origins"] = os.environ["CORS_ORIGINS"].split(",")
    if "WORKERS" in os.environ:
        env_overrides.setdefault("api", {})["workers"] = int(os.environ["WORKERS"])

    # Horizons overrides
    if "HORIZONS_URL" in os.environ:
        env_overrides.setdefault("horizons", {})["base_url"] = os.environ["HORIZONS_URL"]
    if "HORIZONS_TIMEOUT_SECONDS" in os.environ:
        env_overrides.setdefault("horizons", {})["timeout_seconds"] = float(os.environ["HORIZONS_TIMEOUT_SECONDS"])
    if "HORIZONS_MAX_ATTEMPTS" in os.environ:
        env_overrides.setdefault("horizons", {})["max_attempts"] = int(os.environ["HORIZONS_MAX_ATTEMPTS"])
    if "HORIZONS_DEADLINE_SECONDS" in os.environ:
        env_overrides.setdefault("horizons", {})["deadline_seconds"] = float(os.environ["HORIZONS_DEADLINE_SECONDS"])

    # Cache overrides
    if "CACHE_BACKEND" in os.environ:
        env_overrides.setdefault("cache", {})["backend"] = os.environ["CACHE_BACKEND"]
    if "CACHE_TTL_HOURS" in os.environ:
        env_overrides.setdefault("cache", {})["ttl_hours"] = float(os.environ["CACHE_TTL_HOURS"])
    if "CACHE_CLEANUP_INTERVAL_SECONDS" in os.environ:
        env_overrides.setdefault("cache", {})["cleanup_interval_seconds"] = float(os.environ["CACHE_CLEANUP_INTERVAL_SECONDS"])
    if "REDIS_CACHE_URL" in os.environ:
        env_overrides.setdefault("cache", {}).setdefault("redis", {})["url"] = os.environ["REDIS_CACHE_URL"]

    # Observability overrides
    if "METRICS_SINK" in os.environ:
        env_overrides.setdefault("metrics", {})["sink"] = os.environ["METRICS_SINK"]
    if "LOG_LEVEL" in os.environ:
        env_overrides.setdefault("logging", {})["level"] = os.environ["LOG_LEVEL"]
    if "LOG_JSON" in os.environ:
        env_overrides.setdefault("logging", {})["json_format"] = os.environ["LOG_JSON"].lower() == "true"

    # Merge environment overrides into config data
    def merge_dict(base, override):
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                merge_dict(base[key], value)
            else:
                base[key] = value

    merge_dict(data, env_overrides)

    try:
        return AppConfig(**data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")


def describe_config(config: AppConfig) -> dict:
    """Effective configuration summary for startup logs and /healthz."""
    return {
        "horizons_url": config.horizons.base_url,
        "horizons_timeout_seconds": config.horizons.timeout_seconds,
        "horizons_max_attempts": config.horizons.max_attempts,
        "horizons_deadline_seconds": config.horizons.deadline_seconds,
        "cache_backend": config.cache.backend,
        "cache_ttl_hours": config.cache.ttl_hours,
        "metrics_sink": config.metrics.sink,
        "log_level": config.logging.level,
    }

"""
Tests for YAML configuration loading and environment overrides.
"""

import pytest

from falak.config import AppConfig, HorizonsConfig, describe_config, load_config

ENV_VARS = [
    "CORS_ORIGINS", "WORKERS", "HORIZONS_URL", "HORIZONS_TIMEOUT_SECONDS",
    "HORIZONS_MAX_ATTEMPTS", "HORIZONS_DEADLINE_SECONDS", "CACHE_BACKEND",
    "CACHE_TTL_HOURS", "CACHE_CLEANUP_INTERVAL_SECONDS", "REDIS_CACHE_URL",
    "METRICS_SINK", "LOG_LEVEL", "LOG_JSON",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "absent.yaml"))

        assert config == AppConfig()
        assert config.horizons.max_attempts == 3
        assert config.horizons.deadline_seconds is None
        assert config.cache.backend == "memory"
        assert config.cache.ttl_hours == 48.0
        assert config.api.cdn_max_age_seconds == 1800
        assert config.metrics.sink == "prometheus"


class TestLoadConfig:

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "horizons:\n"
            "  timeout_seconds: 10\n"
            "  deadline_seconds: 25\n"
            "cache:\n"
            "  backend: redis\n"
            "  redis:\n"
            "    url: redis://cache:6379/2\n"
            "logging:\n"
            "  level: debug\n"
        )

        config = load_config(str(path))

        assert config.horizons.timeout_seconds == 10
        assert config.horizons.deadline_seconds == 25
        assert config.cache.backend == "redis"
        assert config.cache.redis.url == "redis://cache:6379/2"
        assert config.cache.redis.key_prefix == "falak:ephemeris"
        assert config.logging.level == "DEBUG"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(str(path)) == AppConfig()

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("cache:\n  backend: redis\n  ttl_hours: 12\n")
        monkeypatch.setenv("CACHE_BACKEND", "memory")
        monkeypatch.setenv("HORIZONS_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example,https://b.example")
        monkeypatch.setenv("LOG_JSON", "false")
        monkeypatch.setenv("CACHE_CLEANUP_INTERVAL_SECONDS", "0")

        config = load_config(str(path))

        assert config.cache.backend == "memory"
        assert config.cache.ttl_hours == 12
        assert config.cache.cleanup_interval_seconds == 0
        assert config.horizons.max_attempts == 5
        assert config.api.cors_origins == ["https://a.example", "https://b.example"]
        assert config.logging.json_format is False

    def test_redis_url_env_keeps_yaml_prefix(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("cache:\n  redis:\n    key_prefix: staging:eph\n")
        monkeypatch.setenv("REDIS_CACHE_URL", "redis://other:6379/0")

        config = load_config(str(path))

        assert config.cache.redis.url == "redis://other:6379/0"
        assert config.cache.redis.key_prefix == "staging:eph"

    @pytest.mark.parametrize("yaml_text", [
        "cache:\n  backend: memcached\n",
        "cache:\n  ttl_hours: 0\n",
        "horizons:\n  timeout_seconds: 500\n",
        "horizons:\n  max_attempts: 0\n",
        "horizons:\n  deadline_seconds: -1\n",
        "metrics:\n  sink: statsd\n",
        "logging:\n  level: chatty\n",
        "unexpected_section:\n  key: value\n",
    ])
    def test_invalid_values(self, tmp_path, yaml_text):
        path = tmp_path / "config.yaml"
        path.write_text(yaml_text)

        with pytest.raises(ValueError, match="Configuration validation failed"):
            load_config(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("horizons: [unclosed\n")

        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(str(path))


class TestDescribeConfig:

    def test_summary(self):
        config = AppConfig(horizons=HorizonsConfig(deadline_seconds=20))

        summary = describe_config(config)

        assert summary["horizons_deadline_seconds"] == 20
        assert summary["cache_backend"] == "memory"
        assert summary["metrics_sink"] == "prometheus"
        assert "horizons_url" in summary

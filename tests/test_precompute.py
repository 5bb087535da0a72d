"""
Tests for cache warming and the command line entry point.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from falak.__main__ import parse_args
from falak.caching import InprocPositionStore
from falak.ephemeris.bodies import Planet
from falak.errors import AcquisitionError, CacheError
from falak.precompute import precompute


@pytest.fixture
def store():
    return InprocPositionStore()


@pytest.fixture
def start():
    return datetime(2025, 3, 10, 14, 37, tzinfo=timezone.utc)


class TestPrecompute:

    async def test_fills_every_bucket(self, store, stub_client, recording_sleep, start):
        counts = await precompute(store, stub_client, start=start, hours_ahead=3, sleep=recording_sleep)

        assert counts == {"computed": 21, "skipped": 0, "errors": 0}
        assert store.get_stats()["size"] == 21
        buckets = sorted({bucket for _, bucket in stub_client.calls})
        assert buckets == [datetime(2025, 3, 10, 14 + i, tzinfo=timezone.utc) for i in range(3)]

    async def test_pauses_between_batches_only(self, store, stub_client, recording_sleep, start):
        await precompute(
            store, stub_client, start=start, hours_ahead=3,
            batch_pause_seconds=1.0, sleep=recording_sleep
        )

        assert recording_sleep.delays == [1.0, 1.0]

    async def test_skips_live_entries(self, store, stub_client, recording_sleep, start, sample_positions):
        bucket = datetime(2025, 3, 10, 14, tzinfo=timezone.utc)
        await store.put(Planet.MARS, bucket, sample_positions[Planet.MARS])

        counts = await precompute(
            store, stub_client, start=start, hours_ahead=1, planets=["mars", "moon"], sleep=recording_sleep
        )

        assert counts == {"computed": 1, "skipped": 1, "errors": 0}
        assert stub_client.calls == [(Planet.MOON, bucket)]

    async def test_fully_cached_run_does_not_pause(self, store, stub_client, recording_sleep, start):
        await precompute(store, stub_client, start=start, hours_ahead=2, planets=["sun"], sleep=recording_sleep)
        recording_sleep.delays.clear()

        counts = await precompute(store, stub_client, start=start, hours_ahead=2, planets=["sun"], sleep=recording_sleep)

        assert counts == {"computed": 0, "skipped": 2, "errors": 0}
        assert recording_sleep.delays == []

    async def test_upstream_errors_are_counted(self, store, stub_client, recording_sleep, start):
        stub_client.error = AcquisitionError("Horizons returned HTTP 503")

        counts = await precompute(
            store, stub_client, start=start, hours_ahead=2, planets=["mars"], sleep=recording_sleep
        )

        assert counts == {"computed": 0, "skipped": 0, "errors": 2}
        assert store.get_stats()["size"] == 0

    async def test_cache_write_failure_is_an_error(self, stub_client, recording_sleep, start):
        store = AsyncMock()
        store.contains.return_value = False
        store.put.side_effect = CacheError("Redis set failed")

        counts = await precompute(
            store, stub_client, start=start, hours_ahead=1, planets=["mars"], sleep=recording_sleep
        )

        assert counts["errors"] == 1

    async def test_cache_read_failure_still_fetches(self, stub_client, recording_sleep, start):
        store = AsyncMock()
        store.contains.side_effect = CacheError("Redis get failed")

        counts = await precompute(
            store, stub_client, start=start, hours_ahead=1, planets=["mars"], sleep=recording_sleep
        )

        assert counts["computed"] == 1
        store.put.assert_awaited_once()

    async def test_unknown_planet(self, store, stub_client, start):
        with pytest.raises(ValueError):
            await precompute(store, stub_client, start=start, hours_ahead=1, planets=["pluto"])


class TestParseArgs:

    def test_precompute_options(self):
        args = parse_args(["--config", "prod.yaml", "precompute", "--hours", "12", "--planets", "sun,moon"])

        assert args.command == "precompute"
        assert args.config == "prod.yaml"
        assert args.hours == 12
        assert args.planets == "sun,moon"
        assert args.start is None

    def test_serve_defaults(self):
        args = parse_args(["serve"])

        assert args.host == "0.0.0.0"
        assert args.port == 8080

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

"""
Command line entry point.

    python -m falak serve --port 8080
    python -m falak precompute --hours 48
"""

import argparse
import asyncio
import json
import os
import sys

from .caching_redis import build_position_store
from .config import load_config
from .horizons.client import HorizonsClient
from .obs.logging import setup_logging
from .precompute import precompute
from .util.dates import parse_request_datetime


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="falak", description="Falak Engine ephemeris service")
    parser.add_argument('--config', default='config.yaml',
                        help='Path to YAML configuration file')
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the HTTP API')
    serve.add_argument('--host', default='0.0.0.0')
    serve.add_argument('--port', type=int, default=8080)

    warm = subparsers.add_parser('precompute', help='Warm the position cache')
    warm.add_argument('--hours', type=int, default=None,
                      help='Hour buckets to warm (defaults to precompute.hours_ahead)')
    warm.add_argument('--start', default=None,
                      help='ISO-8601 start instant (defaults to now)')
    warm.add_argument('--planets', default=None,
                      help='Comma-separated planets (defaults to all seven)')
    return parser.parse_args(argv)


async def run_precompute(args) -> dict:
    config = load_config(args.config)
    setup_logging(level=config.logging.level, enable_json=config.logging.json_format)

    store = build_position_store(
        config.cache.backend,
        config.cache.ttl_hours,
        redis_url=config.cache.redis.url,
        key_prefix=config.cache.redis.key_prefix
    )
    client = HorizonsClient.from_config(config.horizons)
    try:
        return await precompute(
            store,
            client,
            start=parse_request_datetime(args.start) if args.start else None,
            hours_ahead=args.hours or config.precompute.hours_ahead,
            planets=args.planets.split(",") if args.planets else None,
            batch_pause_seconds=config.precompute.batch_pause_seconds
        )
    finally:
        await store.close()


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.command == 'serve':
        import uvicorn
        os.environ.setdefault("FALAK_CONFIG", args.config)
        uvicorn.run("falak.main:app", host=args.host, port=args.port)
        return 0

    counts = asyncio.run(run_precompute(args))
    print(json.dumps(counts))
    return 1 if counts["errors"] else 0


if __name__ == '__main__':
    sys.exit(main())

# falak/main.py
import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__, api
from .caching import PositionStore
from .caching_redis import build_position_store
from .config import AppConfig, describe_config, load_config
from .errors import FalakError
from .horizons.client import HorizonsClient
from .obs.logging import StructuredLogger, get_request_id, set_request_context, setup_logging
from .obs.metrics import build_metrics_sink, get_metrics_content, mark_app_start
from .orchestrator import EphemerisOrchestrator
from .schemas import HealthzResponse
from .util.dates import isoformat_z, utc_now

logger = logging.getLogger(__name__)
business_logger = StructuredLogger(__name__)

CONFIG_PATH = os.getenv("FALAK_CONFIG", "config.yaml")

# Global configuration and services
CONFIG: Optional[AppConfig] = None
STORE: Optional[PositionStore] = None


async def cleanup_loop(store: PositionStore, interval_seconds: float) -> None:
    """Periodically drop expired entries from the position store."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await store.cleanup_expired()
        except FalakError as e:
            logger.warning(f"Cache cleanup failed: {e.message}")
            continue
        except Exception as e:
            logger.error(f"Unexpected cache cleanup failure: {e}", exc_info=True)
            continue
        business_logger.cache_operation("cleanup_expired", store.backend, size=removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup and shutdown.
    """
    global CONFIG, STORE

    CONFIG = app.state.config
    setup_logging(level=CONFIG.logging.level, enable_json=CONFIG.logging.json_format)

    startup_start = time.perf_counter()
    logger.info(f"Starting Falak Engine v{__version__}...")
    business_logger.startup_event("application", "starting", details=describe_config(CONFIG))

    cache_start = time.perf_counter()
    STORE = build_position_store(
        CONFIG.cache.backend,
        CONFIG.cache.ttl_hours,
        redis_url=CONFIG.cache.redis.url,
        key_prefix=CONFIG.cache.redis.key_prefix
    )
    cache_health = await STORE.health_check()
    business_logger.startup_event(
        "cache",
        "ready" if cache_health.get("healthy") else "error",
        duration_ms=(time.perf_counter() - cache_start) * 1000,
        details={"backend": STORE.backend, "ttl_hours": CONFIG.cache.ttl_hours}
    )
    if not cache_health.get("healthy"):
        # Requests still succeed without a cache; they just always go upstream
        logger.warning(f"Position store unhealthy at startup: {cache_health.get('error')}")

    client = HorizonsClient.from_config(CONFIG.horizons)
    sink = build_metrics_sink(CONFIG.metrics.sink)
    business_logger.startup_event("metrics", "ready", details={"sink": sink.name})

    # Inject dependencies into API module
    api.CONFIG = CONFIG
    api.ORCHESTRATOR = EphemerisOrchestrator(STORE, client, sink)

    cleanup_task = None
    if CONFIG.cache.cleanup_interval_seconds > 0:
        cleanup_task = asyncio.create_task(cleanup_loop(STORE, CONFIG.cache.cleanup_interval_seconds))

    mark_app_start()
    business_logger.startup_event(
        "application", "ready",
        duration_ms=(time.perf_counter() - startup_start) * 1000
    )

    yield

    logger.info(f"Shutting down Falak Engine v{__version__}...")
    business_logger.startup_event("application", "stopping")

    if cleanup_task:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass

    await STORE.close()
    business_logger.startup_event("application", "stopped")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Explicit configuration; loaded from FALAK_CONFIG when omitted
    """
    config = config or load_config(CONFIG_PATH)

    app = FastAPI(
        title="Falak Engine",
        version=__version__,
        description="Cached planetary positions with strength, day-ruler and lunar scoring",
        lifespan=lifespan
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins or ["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        """
        Request correlation and access logging.
        """
        request_id = set_request_context(request.headers.get("x-request-id"))
        start_time = time.perf_counter()

        response = await call_next(request)

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "HTTP request processed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "user_agent": request.headers.get("user-agent", "unknown")
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(FalakError)
    async def falak_error_handler(request: Request, exc: FalakError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else first.get("msg", "Invalid request body")
        logger.warning(f"Bad request: INPUT.INVALID - {message}")
        return JSONResponse(
            status_code=400,
            content={"error": message, "cache_status": "ERROR", "code": "INPUT.INVALID"}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler for unhandled errors.
        """
        logger.error(f"Unhandled exception in {request.method} {request.url}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "cache_status": "ERROR", "code": "SERVER.ERROR"},
            headers={"X-Request-ID": get_request_id() or ""}
        )

    @app.get("/healthz", response_model=HealthzResponse)
    async def healthz():
        """
        Health check endpoint with cache backend status.
        """
        cache_info = STORE.get_stats() if STORE else {"error": "Cache not initialized"}
        cache_health = await STORE.health_check() if STORE else {"healthy": False}

        return {
            "status": "healthy" if cache_health.get("healthy") else "degraded",
            "timestamp": isoformat_z(utc_now()),
            "version": __version__,
            "cache": cache_info,
            "cache_health": cache_health,
            "config": describe_config(app.state.config)
        }

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics_endpoint():
        """
        Prometheus metrics endpoint.
        """
        content, content_type = get_metrics_content()
        return PlainTextResponse(content, media_type=content_type)

    app.include_router(api.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)

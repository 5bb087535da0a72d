# Gunicorn configuration for the Falak Engine API
# Each worker holds its own in-memory position store. With more than one
# worker set CACHE_BACKEND=redis so every worker sees the same cache.

import os

# The service is I/O bound on Horizons; a few async workers go a long way
workers = int(os.getenv("WORKERS", 4))
worker_class = "uvicorn.workers.UvicornWorker"

bind = f"0.0.0.0:{os.getenv('PORT', 8080)}"

# A cold request may spend up to 3 x 30s upstream plus 3s of backoff
timeout = 100
graceful_timeout = 30
keepalive = 5

# Recycle workers so a leaked httpx connection pool cannot grow unbounded
max_requests = 5000
max_requests_jitter = 500

worker_tmp_dir = "/dev/shm"

# Application logs are JSON via falak.obs.logging; access lines come from
# the request middleware, so gunicorn's own access log stays off
accesslog = None
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()

raw_env = [f"FALAK_CONFIG={os.getenv('FALAK_CONFIG', 'config.yaml')}"]

limit_request_line = 2048
limit_request_fields = 32
limit_request_field_size = 4096


def post_worker_init(worker):
    backend = os.getenv("CACHE_BACKEND", "memory")
    if backend == "memory" and workers > 1:
        worker.log.warning(
            "Worker %s uses a private in-memory cache; set CACHE_BACKEND=redis to share it",
            worker.pid
        )


def on_exit(server):
    server.log.info("Falak Engine master exiting")

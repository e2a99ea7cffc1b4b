"""
Gunicorn configuration for the GhostNote billing service.

Uses Uvicorn workers for async ASGI support. With the process-local rate
limiter (RATE_LIMIT_BACKEND=memory) counters are per worker, so the
default is a single worker; set RATE_LIMIT_BACKEND=redis to scale out.
"""

import multiprocessing
import os

# ─── Server Socket ───────────────────────────────────────────
bind = f"0.0.0.0:{os.getenv('PORT', os.getenv('APP_PORT', '8000'))}"

# ─── Worker Processes ────────────────────────────────────────
worker_class = "uvicorn.workers.UvicornWorker"

if os.getenv("RATE_LIMIT_BACKEND", "memory").lower() == "redis":
    workers = min(multiprocessing.cpu_count() * 2 + 1, int(os.getenv("WEB_CONCURRENCY", "4")))
else:
    workers = 1

threads = 1

# ─── Timeouts ────────────────────────────────────────────────
# Processor calls are bounded by PROCESSOR_TIMEOUT_SECONDS (x retries);
# SSE streams stay open and rely on heartbeats, not this timeout
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = 30
keepalive = 5

# ─── Worker Lifecycle ────────────────────────────────────────
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "1000"))
max_requests_jitter = 50
preload_app = False  # async engines don't fork well

# ─── Logging ─────────────────────────────────────────────────
# structlog LoggingMiddleware logs requests; Gunicorn only forwards to stdout
accesslog = None
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()

# ─── Server Mechanics ────────────────────────────────────────
forwarded_allow_ips = "*"

"""
Request/response logging middleware.

Logs every API request with timing and status. Binds a ``request_id``
(taken from an inbound ``X-Request-ID`` header when a proxy supplies one)
to structlog's contextvars so that every log line emitted while handling
the request, including processor and store calls, carries it.
"""

import logging
import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("ghostnote.api")

_QUIET_PATHS = frozenset({"/health"})
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id(request: Request) -> str:
    inbound = request.headers.get("x-request-id", "")
    if _REQUEST_ID_PATTERN.match(inbound):
        return inbound
    return uuid.uuid4().hex[:8]


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs every HTTP request and response.

    Adds ``X-Request-ID`` and ``X-Response-Time`` to the response. Server
    errors are logged at ERROR, client errors at WARNING.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.monotonic() - start_time) * 1000, 1)

        if request.url.path not in _QUIET_PATHS:
            level = logging.INFO
            if response.status_code >= 500:
                level = logging.ERROR
            elif response.status_code >= 400:
                level = logging.WARNING
            logger.log(
                level,
                f"{request.method} {request.url.path} "
                f"→ {response.status_code} ({duration_ms}ms) "
                f"[{request.client.host if request.client else 'unknown'}]",
            )

        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        response.headers["X-Request-ID"] = request_id

        structlog.contextvars.clear_contextvars()
        return response

"""
Security headers middleware.

Every response carries the static headers below. Billing data is never
cacheable: API and health responses get ``Cache-Control: no-store``,
except the SSE stream, which keeps its own ``no-cache`` so proxies do not
buffer it. HSTS is only sent in production.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.config import get_settings

STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

HSTS_VALUE = "max-age=63072000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security and cache headers to every HTTP response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name, value in STATIC_HEADERS.items():
            response.headers.setdefault(name, value)

        if get_settings().is_production:
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        path = request.url.path
        is_stream = response.headers.get("content-type", "").startswith("text/event-stream")
        if (path.startswith("/api/") or path == "/health") and not is_stream:
            response.headers["Cache-Control"] = "no-store"

        return response

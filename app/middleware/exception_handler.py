"""
Global exception handlers for the FastAPI application.

Catches:
1. GhostNoteError subclasses — mapped to HTTP status codes, rendered as
   ``{"error": {"code": ..., "message": ..., **details}}``.
2. RequestValidationError — 400 INVALID_REQUEST (malformed input is
   rejected before any external call).
3. Unhandled Exception — 500 SERVER_ERROR with a unique ``error_id`` for
   customer-support correlation.

HTTPException is NOT handled here — FastAPI's built-in handler deals
with those, and Sentry's ``before_send`` filter drops 4xx events.
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    ForbiddenError,
    GhostNoteError,
    InvalidRequestError,
    InvariantViolationError,
    ProcessorError,
    ProcessorTimeoutError,
    RateLimitedError,
    SubscriptionCancelFailedError,
    SubscriptionConflictError,
)

logger = logging.getLogger(__name__)


def error_body(code: str, message: str, details: dict | None = None) -> dict:
    return {"error": {"code": code, "message": message, **(details or {})}}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers on the FastAPI app.

    Called from ``create_app()`` after all middleware and routers
    are registered.
    """

    @app.exception_handler(GhostNoteError)
    async def handle_ghostnote_error(request: Request, exc: GhostNoteError) -> JSONResponse:
        """Map GhostNoteError subclasses to HTTP status codes."""
        status_code = _get_status_code(exc)
        if status_code >= 500:
            logger.error(
                f"{type(exc).__name__}: {exc.message}",
                exc_info=exc,
                extra={"error_type": type(exc).__name__, "path": request.url.path},
            )
        else:
            logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {
                "Retry-After": str(exc.retry_after),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(time.time()) + exc.retry_after),
            }

        return JSONResponse(
            status_code=status_code,
            content=error_body(exc.code, exc.message, exc.details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Render request validation failures as INVALID_REQUEST."""
        fields = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content=error_body(
                InvalidRequestError.code,
                "Missing or invalid request parameters",
                {"fields": [f for f in fields if f]},
            ),
        )

    @app.exception_handler(Exception)
    async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: log, return 500 with error_id."""
        error_id = uuid.uuid4().hex[:8]
        logger.exception(
            f"Unhandled exception (error_id={error_id})",
            extra={"error_id": error_id, "path": request.url.path},
        )
        return JSONResponse(
            status_code=500,
            content=error_body(
                GhostNoteError.code,
                "Internal server error",
                {"error_id": error_id},
            ),
        )


def _get_status_code(exc: GhostNoteError) -> int:
    """Map exception type to HTTP status code."""
    if isinstance(exc, InvalidRequestError):
        return 400
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, ForbiddenError):
        return 403
    if isinstance(exc, AccountNotFoundError):
        return 404
    if isinstance(exc, SubscriptionConflictError):
        return 409
    if isinstance(exc, RateLimitedError):
        return 429
    if isinstance(exc, ProcessorTimeoutError):
        return 504
    if isinstance(exc, ProcessorError | SubscriptionCancelFailedError):
        return 502
    if isinstance(exc, InvariantViolationError):
        return 500
    # Base GhostNoteError fallback
    return 500

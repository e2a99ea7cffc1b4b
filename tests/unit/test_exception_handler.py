"""Tests for app.middleware.exception_handler — global exception handlers."""

from unittest.mock import patch

from fastapi import FastAPI, HTTPException, Query
from fastapi.testclient import TestClient

from app.core.exceptions import (
    AccountNotFoundError,
    AlreadyCancelingError,
    AuthenticationError,
    ForbiddenError,
    GhostNoteError,
    InvalidRequestError,
    InvariantViolationError,
    NoSubscriptionError,
    ProcessorError,
    ProcessorTimeoutError,
    RateLimitedError,
    SubscriptionCancelFailedError,
)
from app.middleware.exception_handler import error_body, register_exception_handlers


def _make_app_with_handler(exc_to_raise: Exception) -> FastAPI:
    """Create a minimal FastAPI app that raises the given exception."""
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/test")
    async def test_route():
        raise exc_to_raise

    return app


def _get(exc: Exception):
    client = TestClient(_make_app_with_handler(exc), raise_server_exceptions=False)
    return client.get("/test")


class TestErrorBody:
    def test_envelope_shape(self):
        assert error_body("NO_SUBSCRIPTION", "No active subscription found") == {
            "error": {"code": "NO_SUBSCRIPTION", "message": "No active subscription found"}
        }

    def test_details_are_merged(self):
        body = error_body("CONFLICT", "nope", {"currentPeriodEnd": "2026-03-01T00:00:00Z"})
        assert body["error"]["currentPeriodEnd"] == "2026-03-01T00:00:00Z"


class TestGhostNoteErrorMapping:
    """Verify GhostNoteError subclasses map to correct HTTP status codes."""

    def test_invalid_request_returns_400(self):
        resp = _get(InvalidRequestError("userId is required"))
        assert resp.status_code == 400
        assert resp.json() == {"error": {"code": "INVALID_REQUEST", "message": "userId is required"}}

    def test_authentication_returns_401(self):
        resp = _get(AuthenticationError("Invalid or expired token"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    def test_forbidden_returns_403(self):
        resp = _get(ForbiddenError("You can only modify your own account."))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"

    def test_account_not_found_returns_404(self):
        resp = _get(AccountNotFoundError("User not found"))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "USER_NOT_FOUND"

    def test_conflicts_return_409_with_details(self):
        resp = _get(
            AlreadyCancelingError(
                "Subscription is already set to cancel",
                details={"currentPeriodEnd": "2026-03-01T00:00:00Z"},
            )
        )
        assert resp.status_code == 409
        body = resp.json()["error"]
        assert body["code"] == "ALREADY_CANCELING"
        assert body["currentPeriodEnd"] == "2026-03-01T00:00:00Z"

    def test_no_subscription_returns_409(self):
        resp = _get(NoSubscriptionError("No active subscription found"))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "NO_SUBSCRIPTION"

    def test_processor_timeout_returns_504(self):
        resp = _get(ProcessorTimeoutError("timed out"))
        assert resp.status_code == 504
        assert resp.json()["error"]["code"] == "PROCESSOR_TIMEOUT"

    def test_processor_error_returns_502(self):
        resp = _get(ProcessorError("card_declined"))
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "PROCESSOR_ERROR"

    def test_cancel_failed_returns_502(self):
        resp = _get(SubscriptionCancelFailedError("Failed to cancel subscription"))
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "SUBSCRIPTION_CANCEL_FAILED"

    def test_invariant_violation_returns_500(self):
        resp = _get(InvariantViolationError("bad write"))
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "INVARIANT_VIOLATION"

    def test_base_error_returns_500(self):
        resp = _get(GhostNoteError("unknown"))
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "SERVER_ERROR"


class TestRateLimitedError:
    def test_returns_429_with_headers(self):
        resp = _get(RateLimitedError(scope="billing", limit=5, retry_after=42))
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "RATE_LIMITED"
        assert resp.headers["Retry-After"] == "42"
        assert resp.headers["X-RateLimit-Limit"] == "5"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert int(resp.headers["X-RateLimit-Reset"]) > 0


class TestValidationErrors:
    """Verify malformed input renders as INVALID_REQUEST."""

    def test_missing_query_param_returns_400(self):
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/status")
        async def status_route(user_id: str = Query(..., alias="userId")):
            return {"ok": True}

        resp = TestClient(app).get("/status")
        assert resp.status_code == 400
        body = resp.json()["error"]
        assert body["code"] == "INVALID_REQUEST"
        assert body["fields"] == ["userId"]


class TestUnhandledException:
    """Verify catch-all handler for unexpected errors."""

    def test_returns_500_with_error_id(self):
        resp = _get(RuntimeError("kaboom"))
        assert resp.status_code == 500
        body = resp.json()["error"]
        assert body["code"] == "SERVER_ERROR"
        assert body["message"] == "Internal server error"
        assert len(body["error_id"]) == 8

    @patch("app.middleware.exception_handler.logger")
    def test_logs_unhandled_exception(self, mock_logger):
        _get(RuntimeError("kaboom"))
        mock_logger.exception.assert_called_once()
        log_msg = mock_logger.exception.call_args[0][0]
        assert "Unhandled exception" in log_msg
        assert "error_id=" in log_msg

    @patch("app.middleware.exception_handler.logger")
    def test_logs_server_side_errors_as_error(self, mock_logger):
        _get(ProcessorTimeoutError("timed out"))
        mock_logger.error.assert_called_once()
        assert "ProcessorTimeoutError" in mock_logger.error.call_args[0][0]

    @patch("app.middleware.exception_handler.logger")
    def test_logs_refusals_as_warning(self, mock_logger):
        _get(ForbiddenError("not yours"))
        mock_logger.warning.assert_called_once()
        mock_logger.error.assert_not_called()


class TestHTTPExceptionPassthrough:
    """Verify HTTPException is handled by FastAPI, not our handler."""

    def test_http_exception_404_passthrough(self):
        resp = _get(HTTPException(status_code=404, detail="not found"))
        assert resp.status_code == 404
        assert resp.json()["detail"] == "not found"
        assert "error" not in resp.json()

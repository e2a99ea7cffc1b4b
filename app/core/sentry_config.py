"""
Sentry error tracking for the billing service.

Processor faults and invariant violations are the events worth paging on;
domain refusals (conflicts, rate limits, forbidden) are expected traffic
and are dropped before they leave the process.

When ``dsn`` is empty (the default), Sentry is disabled entirely.
"""

import logging

import sentry_sdk
from fastapi import HTTPException
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from app.config import AppEnv
from app.core.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    ForbiddenError,
    GhostNoteError,
    InvalidRequestError,
    RateLimitedError,
    SubscriptionConflictError,
)

# Client-side outcomes that never indicate a server fault
_EXPECTED_ERRORS = (
    AccountNotFoundError,
    AuthenticationError,
    ForbiddenError,
    InvalidRequestError,
    RateLimitedError,
    SubscriptionConflictError,
)


def init_sentry(
    dsn: str,
    app_env: AppEnv,
    app_version: str,
    traces_sample_rate: float = 0.1,
    profiles_sample_rate: float = 0.1,
) -> None:
    """
    Initialize the Sentry SDK.

    Args:
        dsn: Sentry DSN. Empty string disables Sentry entirely.
        app_env: Current environment (used as Sentry ``environment``).
        app_version: Application version (used as Sentry ``release``).
        traces_sample_rate: Fraction of transactions to trace (0.0–1.0).
        profiles_sample_rate: Fraction of transactions to profile (0.0–1.0).
    """
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=app_env.value,
        release=f"ghostnote-billing@{app_version}",
        traces_sample_rate=traces_sample_rate,
        profiles_sample_rate=profiles_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            AsyncioIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        before_send=_filter_events,
        send_default_pii=False,
    )


def _filter_events(event: dict, hint: dict) -> dict | None:
    """
    Filter Sentry events before sending.

    - Drops 4xx HTTPExceptions and expected domain refusals.
    - Tags GhostNoteError subclasses with their error code.
    """
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]

        if isinstance(exc_value, HTTPException) and exc_value.status_code < 500:
            return None

        if isinstance(exc_value, _EXPECTED_ERRORS):
            return None

        if isinstance(exc_value, GhostNoteError):
            event.setdefault("tags", {})
            event["tags"]["error_type"] = type(exc_value).__name__
            event["tags"]["error_code"] = exc_value.code
            if exc_value.details:
                event["extra"] = {**event.get("extra", {}), **exc_value.details}

    return event

"""
Structured logging for the GhostNote billing service.

Modules log through ``logging.getLogger(__name__)``. A single root handler
renders every record with structlog's ProcessorFormatter: console lines
in local development, JSON lines (tagged with the service name) anywhere
else. Request context bound by the logging middleware is merged into
each line, and Stripe secrets or bearer tokens that end up in a log call
are masked before rendering.
"""

import logging
import re
import sys

import structlog

from app.config import AppEnv

SERVICE_NAME = "ghostnote-billing"

# Third-party loggers that are too chatty at INFO
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "stripe")

_SENSITIVE_KEYS = frozenset(
    {"authorization", "stripe_signature", "token", "secret_key", "api_key", "webhook_secret"}
)
_SECRET_PATTERN = re.compile(r"\b(sk|rk|whsec)_(live|test)?_?[A-Za-z0-9]{6,}|Bearer\s+[A-Za-z0-9._-]+")
REDACTED = "[redacted]"


def _add_service_name(_logger, _method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _redact_secrets(_logger, _method_name: str, event_dict: dict) -> dict:
    for key, value in event_dict.items():
        if key.lower() in _SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = _SECRET_PATTERN.sub(REDACTED, value)
    return event_dict


def _shared_processors(use_json: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_secrets,
    ]
    if use_json:
        processors.append(_add_service_name)
    return processors


def setup_logging(
    app_env: AppEnv,
    log_level: str = "INFO",
    log_format: str = "auto",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        app_env: Current environment (development, staging, production).
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR).
        log_format: ``"json"``, ``"console"``, or ``"auto"``
                    (auto = console in dev, json otherwise).
    """
    use_json = _should_use_json(app_env, log_format)
    shared = _shared_processors(use_json)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor
    if use_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared)
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _should_use_json(app_env: AppEnv, log_format: str) -> bool:
    if log_format in ("json", "console"):
        return log_format == "json"
    return app_env != AppEnv.DEVELOPMENT

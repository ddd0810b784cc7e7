"""
structlog setup shared by the API process and the refresh script.

Every event carries the service name and any context bound with
``structlog.contextvars`` (the request id from RequestIDMiddleware).
Values under credential-like keys are masked before rendering.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable, MutableMapping, cast

import structlog

from casa_booking.config import LOG_JSON, LOG_LEVEL, SERVICE_NAME

Processor = Callable[[Any, str, MutableMapping[str, Any]], Any]

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset(
    {"password", "client_secret", "access_token", "authorization", "cookie", "session_token"}
)
QUIET_LOGGERS = ("urllib3", "requests", "redis", "uvicorn.access")


def add_service(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_secrets(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def setup_logging(level: str = LOG_LEVEL, json_logs: bool | None = None) -> None:
    """
    Configure stdlib logging and structlog for the whole process.

    Args:
        level: Minimum level name, e.g. "INFO"
        json_logs: Render JSON lines instead of the colored console format;
            defaults to LOG_JSON
    """
    level = level.upper()
    if json_logs is None:
        json_logs = LOG_JSON

    logging.basicConfig(
        format="[%(asctime)s] %(levelname)s in %(name)s:%(lineno)d: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        add_service,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        # Tracebacks become a string field so each event stays one line.
        processors += [
            structlog.processors.format_exc_info,
            cast(Processor, structlog.processors.JSONRenderer()),
        ]
    else:
        processors += [
            structlog.dev.set_exc_info,
            cast(Processor, structlog.dev.ConsoleRenderer(colors=True)),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

"""
Structured Logging with Structlog.

Every economy event is a snake_case name plus keyword context, rendered as
JSON in production and as colored console lines locally.
"""

import logging
import sys
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor

from qafala.config import settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp service identity and the commit mode on every entry."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    event_dict["transactional"] = settings.use_transactions
    return event_dict


def stringify_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """UUIDs and datetimes as strings so the JSON renderer never sees them raw."""
    for key, value in event_dict.items():
        if isinstance(value, UUID):
            event_dict[key] = str(value)
        elif isinstance(value, datetime):
            event_dict[key] = value.isoformat()
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog on top of stdlib logging.

    A purchase line looks like:
    {
        "event": "drop_purchase_completed",
        "level": "info",
        "timestamp": "2025-11-17T12:00:00.123456Z",
        "logger": "qafala.services.drop_purchase",
        "service": "qafala-economy",
        "version": "0.1.0",
        "transactional": true,
        "request_id": "req-123",
        "user_id": "...",
        "qty": 2
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        stringify_values,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("barter_confirmed", user_id=str(user_id), pair_key=key)
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind request-scoped fields (request id, caller) for the enclosed block.

    Usage:
        with log_context(request_id="req-123", user_id=str(user_id)):
            await engine.purchase(intent)
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = {key: value for key, value in kwargs.items() if value is not None}

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())

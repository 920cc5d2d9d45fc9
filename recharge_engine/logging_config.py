"""Structured logging configuration using structlog.

Every event is a dict with:
- app name, level and ISO timestamp
- request/sweep correlation ids bound through contextvars
- masked recharge code values (full codes never reach the log sink)
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

APP_NAME = "recharge-engine"

# Event keys whose values are recharge code tokens
CODE_KEYS = ("code", "recharge_code")
VISIBLE_CODE_CHARS = 4


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag every event with the application name."""
    event_dict["app"] = APP_NAME
    return event_dict


def mask_code(value: str) -> str:
    """Keep only the first characters of a code token."""
    if not value:
        return value
    if len(value) <= VISIBLE_CODE_CHARS:
        return "*" * len(value)
    return value[:VISIBLE_CODE_CHARS] + "*" * (len(value) - VISIBLE_CODE_CHARS)


def mask_code_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask recharge code tokens carried in known keys."""
    for key in CODE_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = mask_code(value)
    return event_dict


def drop_debug_events(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop DEBUG events unless LOG_LEVEL=DEBUG."""
    if method_name == "debug" and os.getenv("LOG_LEVEL", "INFO").upper() != "DEBUG":
        raise structlog.DropEvent
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines if True, colored console output otherwise
        include_timestamp: Add ISO8601 timestamps
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        mask_code_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if numeric_level > logging.DEBUG:
        processors.append(drop_debug_events)

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables included in all subsequent events.

    Example:
        bind_context(request_id="abc123", purchase_id="pur_456")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Unbind context variables."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def logging_context(**kwargs: Any) -> Iterator[None]:
    """Bind context variables for the duration of a block.

    Example:
        with logging_context(sweep_id="swp_1"):
            logger.info("reminder_sweep_started")
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield

"""
relmap logging - structured logging for the Repository and its backends.

Every relmap module logs through ``get_logger(__name__)`` using event-style
messages with key/value context, so identity-map traffic (gets, saves,
skipped writes, state rollbacks) can be followed in development consoles and
shipped as JSON in production.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="relmap")
            ↓
        structlog processor chain:
          1. TimeStamper (iso)
          2. add_log_level / add_logger_name
          3. _add_service_metadata
          4. _add_entity_key (model + index -> "Customer{1}")
          5. JSONRenderer (or ConsoleRenderer for a TTY)

        logger = get_logger(__name__)
        logger.debug("repository.save", model="Customer", index="1")

Examples:
    >>> from relmap.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.debug("repository.get", model="Order", index="2")

Tags:
    logging, structlog, observability, relmap
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.types import EventDict, Processor, WrappedLogger

    from relmap.settings import RelmapSettings


# Store service name for metadata
_SERVICE_NAME = "relmap"


def _add_service_metadata(
    logger: "WrappedLogger", method_name: str, event_dict: "EventDict"
) -> "EventDict":
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _add_entity_key(
    logger: "WrappedLogger", method_name: str, event_dict: "EventDict"
) -> "EventDict":
    """Combine ``model`` and ``index`` into an ``entity`` key, e.g. ``Customer{1}``.

    The braces follow the index notation of the identity errors.  Unsaved
    instances have no index yet and render as ``Customer{new}``.
    """
    model = event_dict.get("model")
    if model is not None and "index" in event_dict:
        index = event_dict["index"]
        event_dict.setdefault("entity", f"{model}{{{'new' if index is None else index}}}")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "relmap",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
        _add_entity_key,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def configure_logging_from_settings(settings: "RelmapSettings") -> None:
    """Configure logging from :class:`~relmap.settings.RelmapSettings`."""
    configure_logging(level=settings.log_level, json_format=settings.json_logs)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(request_id="abc123"):
            repository.save("Customer", customer)
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> "LogContext":
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]

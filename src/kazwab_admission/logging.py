"""Logging configuration for the admission controller."""

import logging
import sys
from typing import Any

import structlog

from kazwab_admission import __version__
from kazwab_admission.config import Settings, get_settings

# Their INFO output repeats the request metrics and the store's own events
QUIET_LOGGERS = ("uvicorn.access", "redis")


def add_service_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag every event with the service name and version."""
    event_dict.setdefault("service", "kazwab-admission")
    event_dict.setdefault("version", __version__)
    return event_dict


def _renderer(settings: Settings) -> Any:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def setup_logging() -> None:
    """Configure structured logging.

    Fields bound by the admission middleware (``client_key``, ``path``) are
    merged into every event logged while the request is handled, so a
    ``rate_limit_exceeded`` line names the route that was throttled.
    """
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(settings),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

"""Structured logging for the HTTP app and the engine services."""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from famquest.config import Settings

# Chatty libraries that only matter when debugging
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "arq.jobs", "httpx")


def service_context(settings: Settings) -> structlog.types.Processor:
    """Stamp every event with the service name and environment."""

    def _add(_logger: Any, _name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        event_dict.setdefault("service", "famquest-engine")
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return _add


def setup_logging(settings: Settings) -> None:
    """JSON lines in deployed environments, a readable console otherwise."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            service_context(settings),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.debug else max(level, logging.WARNING))

"""Logging configuration for Chronicle."""

from __future__ import annotations

import logging
import sys

import structlog

from chronicle.config import Settings, get_settings

# Third-party loggers that are chatty at INFO while the classifier is called
QUIET_LOGGERS = ("anthropic", "httpx", "httpcore", "asyncpg")


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog and stdlib logging from ``settings``.

    Development environments get a colored console renderer; everything
    else emits one JSON object per line, tagged with the environment name.
    """
    settings = settings or get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if settings.is_development
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(environment=settings.environment)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)

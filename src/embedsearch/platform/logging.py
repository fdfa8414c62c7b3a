"""
embedsearch Structured Logging

Configures structlog for the bridge. Engine process output is not routed
here; it goes to ``<data_directory>/engine.log``.
"""

import logging
import sys

import structlog

from embedsearch.platform.config import settings

# Chatty at INFO: one line per readiness probe and task poll
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def configure_logging(level: str | None = None) -> None:
    """Configure structured logging for the application."""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
            if settings.APP_ENV == "production"
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def bind_instance(name: str) -> None:
    """Attach an instance name to every log event of the current task."""
    structlog.contextvars.bind_contextvars(instance=name)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)

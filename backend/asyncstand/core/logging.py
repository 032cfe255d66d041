from __future__ import annotations

import logging

import structlog

from asyncstand.core.config import settings


def configure_logging() -> None:
    """Configure structlog once for the process (API and scheduler share it)."""
    level = getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.LOG_JSON and settings.environment_name != "development"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

"""structlog setup shared by the API server, the CLI and the tests."""

from __future__ import annotations

import logging
import sys

import structlog

from expense_portal.config import get_settings

# Third-party loggers that are chatty at INFO.
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx", "httpcore")

_configured = False


def setup_logging(force: bool = False) -> None:
    """Configure structlog once per process.

    Production renders one JSON object per line; every other environment
    uses the console renderer. Each event carries ``service`` and ``env``.
    """
    global _configured
    if _configured and not force:
        return

    settings = get_settings()
    level = logging.getLevelName(settings.expense_log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.expense_env == "production"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="expense-portal", env=settings.expense_env)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a named structured logger."""
    return structlog.get_logger(name)

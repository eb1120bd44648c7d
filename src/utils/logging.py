# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structured logging configuration using structlog.

Pipeline modules log through the standard library
(`logging.getLogger(__name__)` with %-style arguments). setup_logging()
installs a structlog ProcessorFormatter on the root handler, so those
records are rendered by the same processor chain as structlog loggers and
carry the context bound with bind_context() (job name, run id).

Output is JSON outside development and colored console output in
development.

Example:
    >>> from src.utils.logging import setup_logging, bind_context
    >>> setup_logging(get_settings())
    >>> bind_context(job="sweep_daily_risk", run_id="abc-123")
    >>> logging.getLogger(__name__).info("Swept %d students", 120)
"""

import logging
import sys
from typing import TYPE_CHECKING, TextIO

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from src.core.config.settings import Settings

# Third-party loggers kept at WARNING
NOISY_LOGGERS = (
    "dramatiq",
    "apscheduler",
    "twilio",
    "aiosmtplib",
    "httpx",
    "httpcore",
    "sqlalchemy",
    "asyncio",
    "urllib3",
)


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(settings: "Settings", stream: TextIO | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        settings: Application settings containing log_level and debug flag.
        stream: Output stream, stdout by default.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    shared = _shared_processors()

    renderer: Processor
    if settings.is_development or settings.debug:
        renderer = structlog.dev.ConsoleRenderer(colors=stream is None)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    logging.getLogger("src").setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for the given module name.

    Args:
        name: Usually __name__ of the calling module.

    Returns:
        A bound structlog logger instance.
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: object) -> None:
    """Bind key-value pairs to every log record of the current context.

    Jobs bind their name and a run id so all records of one sweep can be
    correlated.

    Example:
        >>> bind_context(job="sweep_daily_risk", run_id="abc-123")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear bound context; called when a job finishes on a worker thread."""
    structlog.contextvars.clear_contextvars()

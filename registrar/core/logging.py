"""Structured logging configuration using structlog.

Modules log through ``logging.getLogger(__name__)``; post-commit side effects
use :func:`get_logger` so failures carry key/value context (year, task, tenant).
Output is JSON when ``LOG_JSON`` is set, colored console output otherwise.
"""

import logging
import sys
from typing import List

import structlog
from structlog.types import Processor

from registrar.core.config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure structlog and the standard library root logger."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_json:
        processors: List[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    for logger_name in ["uvicorn.access", "httpx", "httpcore", "sqlalchemy", "asyncio", "aiosmtplib"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("registrar").setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for the given module name."""
    return structlog.get_logger(name)

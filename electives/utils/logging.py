# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Logging setup for the allocation engine.

Modules log through the standard library (``logging.getLogger(__name__)``).
setup_logging() routes those records through structlog so that they share
one renderer with structlog loggers: JSON lines outside development,
colored console output in development or debug mode.

Example:
    >>> from electives.utils.logging import setup_logging, get_logger
    >>> from electives.core.config import get_settings
    >>> setup_logging(get_settings())
    >>> get_logger(__name__).info("selection committed", student_id=1, subject_id=7)
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from electives.core.config.settings import Settings

# Drivers and the ORM are chatty at DEBUG; keep them at WARNING.
QUIET_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "aiosqlite", "asyncpg", "asyncio")


def _render_chain(settings: "Settings") -> list[Processor]:
    if settings.is_development or settings.debug:
        return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(settings: "Settings") -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        settings: Settings providing log_level, environment and debug.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[*pre_chain, structlog.stdlib.ExtraAdder()],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_render_chain(settings),
            ],
        )
    )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, "_electives", False)]:
        root.removeHandler(existing)
    handler._electives = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("electives").setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to a module name."""
    return structlog.get_logger(name)


def bind_context(**kwargs: object) -> None:
    """Attach key/values (e.g. executor_id, request_id) to every later log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Forget values bound with bind_context()."""
    structlog.contextvars.clear_contextvars()

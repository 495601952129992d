from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False


def setup_logging(filename: str | Path | None = None, *, level: int = logging.INFO) -> structlog.BoundLogger:
    """Set up structured logging for the context_bundle package.

    Configuration happens once per process; later calls only return the logger,
    except that passing a `filename` after the first call adds a file handler so
    the CLI can redirect logs after import-time setup.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        level: Minimum level for both stdlib logging and the structlog filter.

    Returns:
        A structlog logger instance configured for the context_bundle package.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if not _LOGGING_CONFIGURED:
        handlers: list[logging.Handler] = []
        if filename:
            handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

        logging.basicConfig(
            level=level,
            handlers=handlers,
            format="%(message)s",
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True
    elif filename:
        root = logging.getLogger()
        root.handlers = [logging.FileHandler(str(filename), encoding="utf-8")]

    return structlog.get_logger("context_bundle")


logger = setup_logging()

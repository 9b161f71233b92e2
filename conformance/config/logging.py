"""
Structured logging for the conformance engine.

A run binds its ID into structlog's context variables, so every event logged
by any of its sequences (including ones running concurrently) carries
``run_id`` without the call sites passing it along.
"""

import logging
import sys
import uuid
from collections.abc import Callable

import structlog

# Libraries whose request-level chatter drowns out test results
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def get_run_id() -> str:
    """The run ID bound to the current context, or an empty string."""
    return structlog.contextvars.get_contextvars().get("run_id", "")


def set_run_id(run_id: str | None = None) -> str:
    """Bind a run ID (a fresh one unless given) to the current context."""
    run_id = run_id or uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(run_id=run_id)
    return run_id


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure structlog on top of the standard library.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines if True, otherwise human-readable console output
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: list[Callable] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdout is reserved for the run summary
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, usually for ``__name__``."""
    return structlog.get_logger(name)

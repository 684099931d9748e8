"""Structured logging for tidyinbox.

Everything logs through structlog. The long-running sweeper emits JSON to
stdout; CLI commands use the console renderer.

Two kinds of context are attached automatically:
- ``sweep_id``: one UUID per sweeper tick (``set_correlation_id``)
- per-rule fields such as ``rule_id`` and ``owner_id`` (``log_context``)

Usage:
    from tidyinbox.core.logging import get_logger, log_context, set_correlation_id

    logger = get_logger(__name__)

    set_correlation_id(str(uuid.uuid4()))
    with log_context(rule_id=12, owner_id="alice"):
        logger.info("rule_run_complete", items_processed=40)
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog

_sweep_id: ContextVar[str | None] = ContextVar("sweep_id", default=None)

# Chatty at INFO; only their warnings are interesting unless debugging
_QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore", "aiosqlite")


def set_correlation_id(correlation_id: str | None) -> None:
    """Tag every log entry in the current context with this sweep id (None clears it)."""
    _sweep_id.set(correlation_id)


def get_correlation_id() -> str | None:
    return _sweep_id.get()


def add_sweep_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor adding the current sweep id, if any."""
    sweep_id = _sweep_id.get()
    if sweep_id is not None:
        event_dict.setdefault("sweep_id", sweep_id)
    return event_dict


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every log entry emitted inside the block.

    Nested blocks add to (and may shadow) the outer fields; leaving a block
    restores the previous binding.
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    cache_loggers: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines if True, coloured console output otherwise
        cache_loggers: Freeze each logger's processors on first use. Pass
            False for a provisional setup that a later call will replace;
            loggers cached under it would ignore the replacement.
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_sweep_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

"""Structlog configuration and trace-id correlation helpers."""

from __future__ import annotations

import logging as std_logging
import secrets
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from gitplumb.lib.types import TraceId

_VERBOSITY_LEVELS = (std_logging.WARNING, std_logging.INFO, std_logging.DEBUG)


def level_for_verbosity(verbosity: int) -> int:
    return _VERBOSITY_LEVELS[max(0, min(verbosity, len(_VERBOSITY_LEVELS) - 1))]


def configure_logging(json_mode: bool = False, verbosity: int = 0) -> None:
    """Send gitplumb diagnostics to stderr as console lines or JSON records.

    Processes spawned by gitplumb never inherit this stream; their stdout is
    returned to the caller and their stderr is captured separately.
    """

    level = level_for_verbosity(verbosity)
    handler = std_logging.StreamHandler(sys.stderr)
    handler.setFormatter(std_logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler])

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def new_trace_id() -> TraceId:
    return TraceId(secrets.token_hex(6))


@contextmanager
def trace_context(trace_id: str, **fields: object) -> Iterator[None]:
    """Bind `trace_id` (and extra fields) to every log event in this context."""

    with structlog.contextvars.bound_contextvars(trace_id=trace_id, **fields):
        yield

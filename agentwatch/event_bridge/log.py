"""Logging configuration using loguru.

stdout belongs to the JSON-lines UI emitter, so every log line goes to
stderr (or another text sink).  Records from stdlib loggers -- httpx,
httpcore and the ``stream`` modules -- are forwarded into loguru.

Two output styles:

- human: coloured one-line records for a terminal;
- serialized: one JSON object per record, for running under a supervisor
  that collects structured logs.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from typing import TextIO

HUMAN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Per-request lines from these would drown out the reconnect loop's own logs.
QUIET_LOGGERS = ("httpx", "httpcore")


class _InterceptHandler(logging.Handler):
    """Re-emit stdlib records through loguru at the original call site."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, serialize: bool = False, sink: TextIO | None = None) -> int:
    """Make loguru the only log sink and route stdlib logging into it.

    Returns the loguru handler id of the installed sink.
    """
    level = level.upper()

    logger.remove()
    if serialize:
        handler_id = logger.add(sink or sys.stderr, level=level, serialize=True)
    else:
        handler_id = logger.add(sink or sys.stderr, level=level, format=HUMAN_FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={}, serialize={})", level, serialize)
    return handler_id

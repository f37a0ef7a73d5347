"""Logging setup for ravenlsp.

All modules log through children of the ``ravenlsp`` logger. Two extra
levels sit around the standard ones: VERBOSE between DEBUG and INFO, and
TRACE below DEBUG for wire traffic.

Output goes to a file (config or RAVEN_LOG). Without a file, stderr is
used only when it is a terminal: when spawned by an editor, stdout carries
the protocol and stderr is usually a pipe nobody reads.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ravenlsp.config import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("ravenlsp")

# -v count -> level; anything above the last entry means everything
_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_FORMAT = "%(asctime)s %(levelname)s [%(name)s]: %(message)s"
_DATE_FORMAT = "%H:%M:%S"

_initialized = False


class _LowercaseLevelFormatter(logging.Formatter):
    """Renders level names in lowercase without touching the shared record."""

    def format(self, record: logging.LogRecord) -> str:
        copy = logging.makeLogRecord(record.__dict__)
        copy.levelname = record.levelname.lower()
        return super().format(copy)


def resolve_level(config: LoggingConfig | None) -> int:
    """Level from config: ``verbose`` wins over ``level``; INFO by default."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY[max(0, min(config.verbose, len(_VERBOSITY) - 1))]
    if config.level:
        name = config.level.upper()
        if name == "WARN":
            name = "WARNING"
        return logging.getLevelNamesMapping().get(name, logging.INFO)
    return logging.INFO


def _attach(handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the ravenlsp logger. Only the first call has an effect."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)

    path = (config.file if config else None) or os.environ.get("RAVEN_LOG")
    console = sys.stderr.isatty()
    if path:
        try:
            _attach(logging.FileHandler(os.path.expanduser(path), encoding="utf-8"), level)
            return
        except OSError as e:
            if console:
                print(f"[ravenlsp] Cannot open log file {path}: {e}", file=sys.stderr)
    if console:
        _attach(logging.StreamHandler(sys.stderr), level)


def get_logger(name: str | None = None) -> logging.Logger:
    """The package logger, or its child ``ravenlsp.<name>``."""
    return logger.getChild(name) if name else logger

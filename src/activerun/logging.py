"""Logging for activerun.

Everything logs under the ``activerun`` logger through ``get_logger``.
``setup_logging`` runs once at startup and picks:

- the level, from ``--verbose`` (0 errors .. 4 trace) or the configured name
- the destination, a file from config or ``ACTIVERUN_LOG``, else stderr
  when it is an interactive console
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from activerun.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("activerun")

LOG_ENV_VAR = "ACTIVERUN_LOG"

_initialized = False

_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None = None, verbose: int | None = None) -> int:
    """Level for the given verbosity count or configured level name.

    A verbosity count wins over the configured name. Unknown names mean INFO.
    """
    if verbose is not None:
        return _VERBOSITY_LEVELS[max(0, min(verbose, len(_VERBOSITY_LEVELS) - 1))]
    if config is None or not config.level:
        return logging.INFO
    name = config.level.upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _handler_for(config: LoggingConfig | None) -> logging.Handler | None:
    path = config.file if config and config.file else os.environ.get(LOG_ENV_VAR)
    if path:
        try:
            return logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[activerun] Failed to open log file: {e}", file=sys.stderr)
    # Only a real console; pipes belong to whoever launched us
    if sys.stderr.isatty():
        return logging.StreamHandler(sys.stderr)
    return None


def setup_logging(config: LoggingConfig | None = None, verbose: int | None = None) -> None:
    """Configure the activerun logger. Later calls do nothing.

    Args:
        config: Configured level name and log file.
        verbose: Count of ``-v`` flags from the command line.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config, verbose)
    logger.setLevel(level)

    handler = _handler_for(config)
    if handler is None:
        return
    handler.setLevel(level)
    handler.setFormatter(
        _LowercaseLevelFormatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt="%H:%M:%S"
        )
    )
    logger.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """The activerun logger, or its child ``activerun.<name>``."""
    if name:
        return logger.getChild(name)
    return logger

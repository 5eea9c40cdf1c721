"""Logging for the ``nimbus`` logger tree.

Two extra levels sit between the standard ones: VERBOSE (15) for per-call
tool and bridge traffic, TRACE (5) for turn-state transitions. The CLI's
``-v`` count maps onto them (0 errors only ... 4 everything).

Where records go depends on how Nimbus runs:

``nimbus chat``
    The REPL owns the terminal, so records go to a file (``logging.file``
    or ``NIMBUS_LOG``) and reach stderr only when it is an interactive tty.
``nimbus serve``
    There is no REPL, so stderr always gets a handler and uvicorn's own
    loggers are routed through the same handlers. Server errors then share
    the Nimbus format and file.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nimbus.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("nimbus")

# uvicorn loggers adopted while serving
SERVER_LOGGERS = ("uvicorn", "uvicorn.error")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

_LEVEL_NAMES = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_installed: list[logging.Handler] = []


class _LowercaseLevelFormatter(logging.Formatter):
    """Lowercase level names, ``nimbus.`` dropped from logger names."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        if record.name.startswith("nimbus."):
            record.name = record.name[len("nimbus."):]
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for a LoggingConfig; ``verbose`` wins over ``level``."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY[max(0, min(config.verbose, len(_VERBOSITY) - 1))]
    if config.level:
        return _LEVEL_NAMES.get(config.level.upper(), logging.INFO)
    return logging.INFO


def _build_handlers(
    config: LoggingConfig | None, level: int, force_stderr: bool
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    log_path = config.file if config and config.file else os.environ.get("NIMBUS_LOG")
    want_stderr = force_stderr or sys.stderr.isatty()

    if log_path:
        try:
            handlers.append(
                logging.FileHandler(os.path.expanduser(log_path), mode="a", encoding="utf-8")
            )
        except OSError as e:
            if want_stderr:
                print(f"[nimbus] Failed to open log file: {e}", file=sys.stderr)
        else:
            # A log file replaces the tty handler for chat; serve keeps both
            want_stderr = force_stderr

    if want_stderr:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = _LowercaseLevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: LoggingConfig | None = None, *, force_stderr: bool = False) -> None:
    """Install Nimbus's handlers. Only the first call has any effect.

    Args:
        config: Level, verbosity and file settings.
        force_stderr: Serving mode. Always log to stderr and adopt uvicorn's
            loggers so server messages use the same handlers.
    """
    if _installed:
        return

    level = resolve_level(config)
    handlers = _build_handlers(config, level, force_stderr)
    if not handlers:
        # Nothing to write to; keep records from reaching logging.lastResort
        handlers = [logging.NullHandler()]

    logger.setLevel(level)
    for handler in handlers:
        logger.addHandler(handler)

    if force_stderr:
        for name in SERVER_LOGGERS:
            server_logger = logging.getLogger(name)
            server_logger.handlers.clear()
            server_logger.propagate = False
            server_logger.setLevel(max(level, logging.INFO))
            for handler in handlers:
                server_logger.addHandler(handler)

    _installed.extend(handlers)


def reset_logging() -> None:
    """Remove and close the handlers ``setup_logging`` installed."""
    for handler in _installed:
        for name in ("nimbus", *SERVER_LOGGERS):
            logging.getLogger(name).removeHandler(handler)
        handler.close()
    _installed.clear()


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``nimbus`` logger, or its child ``nimbus.<name>``."""
    if name:
        return logger.getChild(name)
    return logger

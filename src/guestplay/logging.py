"""Logging setup for guestplay.

- ``-v`` flags map to INFO, DEBUG and TRACE; TRACE also shows every remote
  command sent to the guest
- Console logging, plus an optional, more detailed log file
- Context managers logging a stage's scope and its duration
- StructuredLogger, which appends key=value context (guest, step) to
  every message
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

# Below DEBUG: remote commands
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

CONSOLE_FORMATS = {
    TRACE: "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
    logging.DEBUG: "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
    logging.INFO: "%(levelname)s [%(name)s] %(message)s",
}
FILE_FORMAT = CONSOLE_FORMATS[logging.DEBUG]

# Indexed by the number of -v flags
VERBOSITY_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG, TRACE)


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a count of -v flags to a logging level."""
    return VERBOSITY_LEVELS[max(0, min(verbosity, len(VERBOSITY_LEVELS) - 1))]


def _console_format(level: int) -> str:
    if level <= TRACE:
        return CONSOLE_FORMATS[TRACE]
    if level <= logging.DEBUG:
        return CONSOLE_FORMATS[logging.DEBUG]
    return CONSOLE_FORMATS[logging.INFO]


def _with_format(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def configure_logging(
    level: int = logging.WARNING,
    log_file: str | Path | None = None,
    file_level: int | None = None,
) -> None:
    """Replace the root logging handlers for a guestplay run.

    Args:
        level: Console level; also picks the console format
        log_file: Optional file receiving logs in the detailed format
        file_level: Level for the log file (defaults to level)

    Example:
        >>> configure_logging(level=logging.INFO, log_file="/tmp/guestplay.log")
    """
    handlers = [_with_format(logging.StreamHandler(), level, _console_format(level))]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            _with_format(logging.FileHandler(log_path), file_level or level, FILE_FORMAT)
        )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(min(h.level for h in handlers))
    for handler in handlers:
        root_logger.addHandler(handler)


def _describe(message: str, context: dict[str, Any]) -> str:
    if not context:
        return message
    return f"{message} ({', '.join(f'{k}={v}' for k, v in context.items())})"


@contextmanager
def log_scope(
    logger: logging.Logger,
    message: str,
    level: int = logging.INFO,
    **context: Any,
) -> Iterator[None]:
    """Log entry to and exit from a block, even when the block raises.

    Example:
        >>> with log_scope(logger, "Stage installed", guest="web"):
        ...     pass
        INFO: Entering: Stage installed (guest=web)
        INFO: Exiting: Stage installed (guest=web)
    """
    described = _describe(message, context)
    logger.log(level, f"Entering: {described}")
    try:
        yield
    finally:
        logger.log(level, f"Exiting: {described}")


@contextmanager
def log_performance(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    **context: Any,
) -> Iterator[None]:
    """Log how long a block took."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.log(level, _describe(f"{operation} completed in {elapsed:.3f}s", context))


class StructuredLogger:
    """Logger that appends fixed key=value context to every message.

    Example:
        >>> logger = get_logger("guestplay.install", guest="web")
        >>> logger.warning("Cannot detect Ansible", guest_type="plan9")
        WARNING [guestplay.install] Cannot detect Ansible (guest=web, guest_type=plan9)
    """

    def __init__(self, name: str, **context: Any) -> None:
        self.logger = logging.getLogger(name)
        self.context = dict(context)

    def log(self, level: int, message: str, **extra: Any) -> None:
        if self.logger.isEnabledFor(level):
            # Report the caller's location, not this wrapper's
            self.logger.log(level, _describe(message, {**self.context, **extra}), stacklevel=3)

    def debug(self, message: str, **extra: Any) -> None:
        self.log(logging.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self.log(logging.INFO, message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        self.log(logging.WARNING, message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        self.log(logging.ERROR, message, **extra)


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Get a structured logger carrying context."""
    return StructuredLogger(name, **context)

"""Logging configuration for infparquet.

All loggers live under the ``infparquet`` namespace. ``logging_observer``
adapts a logger to the progress observer contract so long runs can be
followed in log files instead of a progress bar.
"""

import logging
import threading
from typing import IO

from infparquet._types import ProgressObserver

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
ROOT_LOGGER = "infparquet"


def get_logger(name: str) -> logging.Logger:
    """Get logger for infparquet module."""
    if not name.startswith(ROOT_LOGGER):
        name = ROOT_LOGGER if name == "__main__" else f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def setup_basic_logging(
    level: int = logging.INFO,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Attach a single stream handler to the infparquet root logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(stream)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        logger.addHandler(handler)

    logger.propagate = False


def disable_logging() -> None:
    """Disable all infparquet logging."""
    logging.getLogger(ROOT_LOGGER).setLevel(logging.CRITICAL + 1)


def logging_observer(logger: logging.Logger | None = None, step: int = 25) -> ProgressObserver:
    """Build a progress observer that logs every ``step`` percent.

    Never requests cancellation.
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")

    log = logger or get_logger("progress")
    lock = threading.Lock()
    next_mark = [0]

    def observe(operation: str, row_group_index: int | None, total_row_groups: int, percent: int) -> bool:
        with lock:
            if percent < next_mark[0]:
                return True
            next_mark[0] = (percent // step + 1) * step
        where = "n/a" if row_group_index is None else f"row group {row_group_index + 1}/{total_row_groups}"
        log.info(f"{operation}: {percent}% ({where})")
        return True

    return observe

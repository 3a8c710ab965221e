"""Logging configuration for tradecar-search.

The package logger is named after the import package, so module loggers
created with ``logging.getLogger(__name__)`` (the pipeline) are its
children and share its handlers.  Adapters and the API use ``logger``
from this module directly.

Call :func:`configure_file_logging` once per process to also write each
run to a timestamped file under ``data/logs/``.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

PACKAGE_LOGGER = "tradecar_search"
DEFAULT_LOG_DIR = "data/logs"

# Shared between stderr and file handlers
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _formatter() -> logging.Formatter:
    return logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT)


def _stderr_handler() -> logging.StreamHandler:  # type: ignore[type-arg]
    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(logging.INFO)
    stream.setFormatter(_formatter())
    return stream


logger = logging.getLogger(PACKAGE_LOGGER)
logger.setLevel(logging.INFO)
logger.addHandler(_stderr_handler())


def configure_file_logging(
    log_dir: str = DEFAULT_LOG_DIR,
    *,
    level: int = logging.INFO,
) -> logging.FileHandler:
    """Add a ``tradecar-search_<timestamp>.log`` handler to the package logger.

    Per-source failures, group starts, progress and the run summary all
    land in the file, whichever module logged them.

    Args:
        log_dir: Directory for log files.  Created automatically.
        level: Level for the file handler; lowers the package logger's
            level when finer than it.

    Returns:
        The handler, so callers (or tests) can detach it later.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    file_handler = logging.FileHandler(
        str(log_path / f"tradecar-search_{timestamp}.log"),
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(_formatter())

    if level < logger.level:
        logger.setLevel(level)

    logger.addHandler(file_handler)
    return file_handler


__all__ = ["PACKAGE_LOGGER", "configure_file_logging", "logger"]

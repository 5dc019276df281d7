"""
Logging setup for the ftp-cachestore command line.

The CLI prints command results ([OK] / [ERROR] lines) on stdout, so log
records go to stderr and optionally a log file, never to stdout. Cache
hits and misses are logged at DEBUG and mutations at INFO; --verbose
switches the level to DEBUG.
"""

import logging
import sys
from pathlib import Path

from .config import LogConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"

# Transport libraries that are far noisier than the storage layer at DEBUG
QUIET_LOGGERS = ("paramiko",)


def _file_handler(file: str) -> logging.Handler:
    log_path = Path(file)
    if log_path.parent and not log_path.parent.exists():
        log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_path, mode="a", encoding="utf-8")


def setup_logging(config: LogConfig) -> None:
    """
    Route cache and transport logging for one CLI invocation.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output. Unknown level names fall back to INFO.
    Loggers in QUIET_LOGGERS never go below WARNING, even with DEBUG set.

    Args:
        config: Level, optional log file and whether to log to stderr.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handlers = []
    if config.file:
        handlers.append(_file_handler(config.file))
    if config.console:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

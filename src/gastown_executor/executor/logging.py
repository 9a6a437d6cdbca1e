"""Executor log: one shared logger plus per-execution adapters.

Nothing is written anywhere unless GASTOWN_LOG_FILE is set:
- "1", "true", "yes" or "on" write to ./logs/executor_<date>.log;
- any other value is used as the log file path.

GASTOWN_LOG_LEVEL picks the level by name (DEBUG when unset or unknown).
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "gastown_executor"
LOG_FILE_ENV_VAR = "GASTOWN_LOG_FILE"
LOG_LEVEL_ENV_VAR = "GASTOWN_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_FLAG_VALUES = ("1", "true", "yes", "on")

# Global logger instance (singleton)
_logger: Optional[logging.Logger] = None


def get_logger() -> logging.Logger:
    """Get or create the executor logger."""
    global _logger
    if _logger is None:
        _logger = _setup_logger()
    return _logger


class ExecutionLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with ``[<execution id>]``."""

    def process(self, msg, kwargs):
        return f"[{self.extra['execution_id']}] {msg}", kwargs


def execution_logger(execution_id: str) -> ExecutionLogAdapter:
    return ExecutionLogAdapter(get_logger(), {"execution_id": execution_id})


def log_file_path(value: str) -> Path:
    """Resolve a GASTOWN_LOG_FILE value to the file it names."""
    if value.lower() in _FLAG_VALUES:
        return Path.cwd() / "logs" / f"executor_{datetime.now().strftime('%Y-%m-%d')}.log"
    return Path(value)


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV_VAR, "DEBUG").upper())
    return level if isinstance(level, int) else logging.DEBUG


def _setup_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_level_from_env())

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    value = os.environ.get(LOG_FILE_ENV_VAR)
    if not value:
        return logger

    path = log_file_path(value)
    failure: Optional[OSError] = None
    handler: logging.Handler
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as e:
        failure = e
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    if failure is not None:
        logger.warning(f"Cannot write log file {path}: {failure}; logging to stderr")
    return logger

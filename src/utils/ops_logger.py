"""
Operational logging for exomat components.

These loggers report what the tool itself does (env file rewrites, series
directory setup, table assembly). What happens inside a series is recorded
separately by StructuredLogger in the series' runs/exomat.log.

Usage:
    from utils.ops_logger import get_ops_logger
    logger = get_ops_logger("envs")
    logger.info("Rewrote env files", extra={"count": 4})

Environment:
    EXOMAT_LOG_LEVEL    console level (default INFO)
    EXOMAT_LOG_TO_FILE  "1"/"true"/"yes" also writes <component>.log
    EXOMAT_LOG_DIR      directory for those files (default ~/.cache/exomat)
"""

import logging
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}

_loggers: dict[str, logging.Logger] = {}
_console_handlers: list[logging.Handler] = []
_console_level: Optional[int] = None


class ContextFormatter(logging.Formatter):
    """Appends `extra` fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = [
            f"{key}={value}" for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        ]
        return f"{base} {' '.join(extras)}" if extras else base


def log_dir() -> Path:
    return Path(os.environ.get("EXOMAT_LOG_DIR", Path.home() / ".cache" / "exomat"))


def _level_from_env() -> int:
    name = os.environ.get("EXOMAT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, name, logging.INFO)


def _file_logging_enabled() -> bool:
    return os.environ.get("EXOMAT_LOG_TO_FILE", "").lower() in ("1", "true", "yes")


def get_ops_logger(component: str, log_to_file: Optional[bool] = None) -> logging.Logger:
    """
    Get or create the logger `exomat.<component>`.

    Console output goes to stderr so that stdout only carries command
    output and, when enabled, the series log echo.

    Args:
        component: Component name, e.g. "envs", "series", "table"
        log_to_file: Override EXOMAT_LOG_TO_FILE
    """
    name = f"exomat.{component}"
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console = logging.StreamHandler()
    console.setLevel(_console_level if _console_level is not None else _level_from_env())
    console.setFormatter(ContextFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console)
    _console_handlers.append(console)

    if log_to_file if log_to_file is not None else _file_logging_enabled():
        directory = log_dir()
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(directory / f"{component}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(ContextFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    _loggers[name] = logger
    return logger


def set_console_level(level: int) -> None:
    """Change the console level of all current and future ops loggers."""
    global _console_level
    _console_level = level
    for handler in _console_handlers:
        handler.setLevel(level)

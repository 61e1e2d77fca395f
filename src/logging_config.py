"""
Series log for exomat.

Every series keeps one JSON object per line in runs/exomat.log. Entries
carry a message code so a series can be filtered after the fact, e.g. all
RUN002 entries to find the failed run. The same entries can be echoed to
the terminal in a short colored form.
"""

import sys
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TextIO

from pydantic import BaseModel, Field


class LogLevel(str, Enum):
    """Log severity levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = list(LogLevel)


class MessageCode(str, Enum):
    """Lifecycle events recorded in a series log."""
    # Series (SER)
    SER001 = "SER001"  # Series started
    SER002 = "SER002"  # Series finished
    SER003 = "SER003"  # Series aborted
    SER004 = "SER004"  # Series directory created

    # Runs (RUN), exactly one per executed run
    RUN001 = "RUN001"  # Run completed
    RUN002 = "RUN002"  # Run script failed or could not be spawned
    RUN003 = "RUN003"  # Run directory setup failed

    # Table assembly (TBL)
    TBL001 = "TBL001"  # Outputs collected
    TBL002 = "TBL002"  # Output shadows an environment variable
    TBL003 = "TBL003"  # Run environment file missing or malformed

    # Timings (PRF)
    PRF001 = "PRF001"


CONSOLE_COLORS = {
    LogLevel.DEBUG: "\033[36m",
    LogLevel.INFO: "\033[32m",
    LogLevel.WARNING: "\033[33m",
    LogLevel.ERROR: "\033[31m",
    LogLevel.CRITICAL: "\033[35m",
}
RESET = "\033[0m"

# Context keys shown on the terminal; everything else only goes to the file
CONSOLE_CONTEXT_KEYS = ("run_id", "exit_code", "series", "error")


class LogMessage(BaseModel):
    """One series log entry."""
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
    level: LogLevel
    code: MessageCode
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    duration_ms: Optional[float] = None

    def to_json(self) -> str:
        return self.model_dump_json()

    def to_console(self) -> str:
        """Short form: time, level, code, message, duration and run identity."""
        clock = datetime.fromisoformat(self.timestamp).strftime("%H:%M:%S.%f")[:-3]
        line = (
            f"{clock} {CONSOLE_COLORS.get(self.level, '')}[{self.level.value}]{RESET} "
            f"[{self.code.value}] {self.message}"
        )
        if self.duration_ms is not None:
            line += f" ({self.duration_ms:.2f}ms)"

        shown = [f"{key}={self.context[key]}" for key in CONSOLE_CONTEXT_KEYS if key in self.context]
        if shown:
            line += f" [{', '.join(shown)}]"
        return line


class StructuredLogger:
    """
    Writes series log entries as JSONL and optionally echoes them to stdout.

    The sink is either a file opened in append mode, so that make-table can
    add to the log of an existing series, or a stream owned by the caller.
    """

    def __init__(
        self,
        log_file: Optional[Path] = None,
        min_level: LogLevel = LogLevel.INFO,
        stream: Optional[TextIO] = None,
        console: bool = True,
    ):
        """
        Args:
            log_file: JSONL file to append to
            min_level: Entries below this level are dropped
            stream: Open text stream to use instead of a file; left open on close
            console: Echo entries to stdout
        """
        self.log_file = log_file
        self.min_level = min_level
        self.console = console
        self.sink: Optional[TextIO] = stream
        self._owns_sink = False

        if self.sink is None and log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            self.sink = open(log_file, "a", encoding="utf-8")
            self._owns_sink = True

    def enabled_for(self, level: LogLevel) -> bool:
        return level.rank >= self.min_level.rank

    def write(self, entry: LogMessage) -> None:
        """Emit an already built entry, subject to the level filter."""
        if not self.enabled_for(entry.level):
            return
        if self.console:
            print(entry.to_console(), file=sys.stdout)
        if self.sink is not None:
            self.sink.write(entry.to_json() + "\n")
            self.sink.flush()

    def log(
        self,
        level: LogLevel,
        code: MessageCode,
        message: str,
        context: Optional[dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
    ) -> None:
        if not self.enabled_for(level):
            return
        self.write(LogMessage(
            level=level,
            code=code,
            message=message,
            context=dict(context or {}),
            duration_ms=duration_ms,
        ))

    def debug(self, code: MessageCode, message: str, **context):
        self.log(LogLevel.DEBUG, code, message, context)

    def info(self, code: MessageCode, message: str, **context):
        self.log(LogLevel.INFO, code, message, context)

    def warning(self, code: MessageCode, message: str, **context):
        self.log(LogLevel.WARNING, code, message, context)

    def error(self, code: MessageCode, message: str, **context):
        self.log(LogLevel.ERROR, code, message, context)

    def critical(self, code: MessageCode, message: str, **context):
        self.log(LogLevel.CRITICAL, code, message, context)

    def close(self):
        """Close the sink if this logger opened it."""
        if self.sink is not None and self._owns_sink:
            self.sink.close()
        self.sink = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class PerformanceTimer:
    """
    Times a block and logs one entry when it ends.

    Success is logged at DEBUG as "<operation> completed", an exception at
    ERROR as "<operation> failed" with the error in the context. The
    exception is not suppressed.

    Example:
        with PerformanceTimer(logger, MessageCode.PRF001, "Planning", runs=6):
            plan = plan_runs(...)
    """

    def __init__(self, logger: StructuredLogger, code: MessageCode, operation: str, **context):
        self.logger = logger
        self.code = code
        self.operation = operation
        self.context = context
        self._started: Optional[float] = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.logger.log(LogLevel.DEBUG, self.code, f"{self.operation} completed", self.context, self.elapsed_ms)
        else:
            context = {**self.context, "error": str(exc_val)}
            self.logger.log(LogLevel.ERROR, self.code, f"{self.operation} failed", context, self.elapsed_ms)

"""
Experiment series directories and their log streams.

A series directory is created once per `run` invocation and owns a
read-only backup of the experiment source, the run directories and three
append-only streams: raw stdout, raw stderr and the structured series log.
"""

import io
import os
import shutil
import stat
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

from errors import InvalidExperimentSource, SeriesAlreadyExists, SeriesError
from logging_config import LogLevel, MessageCode, StructuredLogger
from utils.fs_names import (
    MARKER_SERIES,
    MARKER_SRC,
    MARKER_SRC_CP,
    SERIES_EXOMAT_LOG,
    SERIES_RUNS_DIR,
    SERIES_SRC_DIR,
    SERIES_STDERR_LOG,
    SERIES_STDOUT_LOG,
)
from utils.ops_logger import get_ops_logger

logger = get_ops_logger("series")

SERIES_NAME_FORMAT = "%Y-%m-%d-%H-%M-%S"


def copy_tree_writable(src: Path, dst: Path) -> None:
    """
    Copy the contents of `src` into the existing directory `dst`.

    File modes are kept (run.sh stays executable) but copies are always
    writable by the owner.
    """
    def copy_file(from_path, to_path):
        shutil.copyfile(from_path, to_path)
        mode = stat.S_IMODE(os.stat(from_path).st_mode)
        os.chmod(to_path, mode | stat.S_IWUSR)
        return to_path

    shutil.copytree(src, dst, copy_function=copy_file, dirs_exist_ok=True)


def make_files_read_only(root: Path) -> None:
    """Remove write permission from every file below `root`."""
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            mode = stat.S_IMODE(path.stat().st_mode)
            path.chmod(mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))


def _is_inside(maybe_child: Path, parent: Path) -> bool:
    parent = parent.resolve()
    child = maybe_child.resolve()
    return child == parent or parent in child.parents


def validate_source_directory(source_dir: Path) -> Path:
    """
    Check that `source_dir` is an experiment source directory.

    Raises:
        InvalidExperimentSource: If it is not a directory or has no source marker
    """
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise InvalidExperimentSource(f"{source_dir} is not a directory")
    if not (source_dir / MARKER_SRC).is_file():
        raise InvalidExperimentSource(f"{source_dir} is not an experiment source directory")
    return source_dir


def generate_series_path(source_dir: Path, now: Optional[datetime] = None) -> Path:
    """Default series location: <cwd>/<experiment name>-YYYY-MM-DD-HH-MM-SS."""
    now = now or datetime.now()
    name = Path(source_dir).resolve().name
    return Path.cwd().resolve() / f"{name}-{now.strftime(SERIES_NAME_FORMAT)}"


def build_series_directory(source_dir: Path, series_dir: Path) -> Path:
    """
    Create and populate a new series directory.

        SERIES/
          .exomat_series
          .src/            read-only copy of the source, marker swapped
          runs/
            stdout.log stderr.log exomat.log   (empty)

    Raises:
        InvalidExperimentSource: If the source is invalid or would contain the series
        SeriesAlreadyExists: If `series_dir` already exists
        SeriesError: If any other filesystem operation fails
    """
    source_dir = validate_source_directory(source_dir)
    series_dir = Path(series_dir)

    if _is_inside(series_dir, source_dir):
        raise InvalidExperimentSource(
            f"Cannot create series {series_dir} inside of experiment {source_dir}"
        )

    try:
        series_dir.parent.mkdir(parents=True, exist_ok=True)
        series_dir.mkdir()
    except FileExistsError as e:
        raise SeriesAlreadyExists(f"{series_dir} already exists") from e
    except OSError as e:
        raise SeriesError(f"Cannot create series directory {series_dir}: {e}") from e

    try:
        (series_dir / MARKER_SERIES).touch(exist_ok=False)
        runs_dir = series_dir / SERIES_RUNS_DIR
        runs_dir.mkdir()
        for log_name in (SERIES_STDOUT_LOG, SERIES_STDERR_LOG, SERIES_EXOMAT_LOG):
            (runs_dir / log_name).touch(exist_ok=False)

        backup = series_dir / SERIES_SRC_DIR
        backup.mkdir()
        copy_tree_writable(source_dir, backup)
        (backup / MARKER_SRC).unlink()
        (backup / MARKER_SRC_CP).touch()
        make_files_read_only(backup)
    except OSError as e:
        raise SeriesError(f"Cannot populate series directory {series_dir}: {e}") from e

    logger.info("Created series directory", extra={"series": str(series_dir)})
    return series_dir


class SeriesContext:
    """
    The log streams of one series.

    One object owns all three streams and is handed to the executor, so tests
    can use in-memory sinks via SeriesContext.in_memory(). Writes are plain
    sequential appends; runs never execute concurrently.
    """

    def __init__(
        self,
        stdout: TextIO,
        stderr: TextIO,
        logger: StructuredLogger,
        series_dir: Optional[Path] = None,
        owned: tuple = (),
    ):
        self.stdout = stdout
        self.stderr = stderr
        self.logger = logger
        self.series_dir = series_dir
        self._owned = owned

    @classmethod
    def open(
        cls,
        series_dir: Path,
        console: bool = True,
        min_level: LogLevel = LogLevel.INFO,
    ) -> "SeriesContext":
        """Append to the log files of an existing series directory."""
        series_dir = Path(series_dir)
        runs_dir = series_dir / SERIES_RUNS_DIR
        if not runs_dir.is_dir():
            raise SeriesError(f"{series_dir} has no {SERIES_RUNS_DIR} directory")

        # surrogateescape writes undecodable run output back as the original bytes
        opened = []
        try:
            for name in (SERIES_STDOUT_LOG, SERIES_STDERR_LOG):
                opened.append(open(runs_dir / name, "a", encoding="utf-8", errors="surrogateescape"))
            structured = StructuredLogger(
                log_file=runs_dir / SERIES_EXOMAT_LOG,
                min_level=min_level,
                console=console,
            )
        except OSError as e:
            for handle in opened:
                handle.close()
            raise SeriesError(f"Cannot open logs of {series_dir}: {e}") from e

        stdout, stderr = opened
        return cls(stdout, stderr, structured, series_dir=series_dir, owned=(stdout, stderr))

    @classmethod
    def in_memory(cls, min_level: LogLevel = LogLevel.DEBUG) -> "SeriesContext":
        """Context backed by StringIO sinks, nothing is echoed."""
        log_stream = io.StringIO()
        structured = StructuredLogger(stream=log_stream, min_level=min_level, console=False)
        context = cls(io.StringIO(), io.StringIO(), structured)
        context.log_stream = log_stream
        return context

    def append_stdout(self, text: str) -> None:
        if text:
            self.stdout.write(text)
            self.stdout.flush()

    def append_stderr(self, text: str) -> None:
        if text:
            self.stderr.write(text)
            self.stderr.flush()

    def close(self) -> None:
        """Close the streams this context opened."""
        for handle in self._owned:
            handle.close()
        self._owned = ()
        self.logger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def log_series_event(context: SeriesContext, code: MessageCode, message: str, **fields) -> None:
    """
    Record a series-level lifecycle entry.

    SER003 (aborted) is logged at ERROR, everything else at INFO. The series
    directory is added to the entry when the context has one.
    """
    level = LogLevel.ERROR if code == MessageCode.SER003 else LogLevel.INFO
    if context.series_dir is not None:
        fields.setdefault("series", str(context.series_dir))
    context.logger.log(level, code, message, fields)

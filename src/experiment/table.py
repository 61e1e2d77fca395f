"""
Series output aggregation.

Collects the `out_*` files of every run in a series, together with the
variables of the run's environment.env, into one table with a row per run.
Values are copied verbatim (trimmed); nothing is computed on them.
"""

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from envs.algebra import Environment
from envs.store import read_env_file
from errors import EnvStoreError, TableAssemblyFailure
from logging_config import MessageCode, PerformanceTimer, StructuredLogger
from utils.fs_names import OUTPUT_MARKER, RUN_DIR_PREFIX, RUN_ENV_FILE, SERIES_RUNS_DIR
from utils.ops_logger import get_ops_logger

logger = get_ops_logger("table")


@dataclass
class TableData:
    """Columns in first-seen order and one mapping per run."""

    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)

    def add_row(self, row: Dict[str, str]) -> None:
        for column in row:
            if column not in self.columns:
                self.columns.append(column)
        self.rows.append(row)

    def cells(self, row: Dict[str, str]) -> List[str]:
        """Row values in column order, blank where the run has no value."""
        return [row.get(column, "") for column in self.columns]

    def column(self, name: str) -> List[str]:
        return [row.get(name, "") for row in self.rows]


def run_directories(series_dir: Path) -> List[Path]:
    """All run directories of a series in sorted name order."""
    runs_dir = Path(series_dir) / SERIES_RUNS_DIR
    if not runs_dir.is_dir():
        raise TableAssemblyFailure(f"{series_dir} has no {SERIES_RUNS_DIR} directory")
    return sorted(
        (entry for entry in runs_dir.iterdir()
         if entry.is_dir() and entry.name.startswith(RUN_DIR_PREFIX)),
        key=lambda p: p.name,
    )


def collect_run_outputs(run_dir: Path, output_marker: str = OUTPUT_MARKER) -> Dict[str, str]:
    """
    Read the output files of one run.

    Returns:
        Mapping of output name (file name without marker) to trimmed content

    Raises:
        TableAssemblyFailure: If a file is named exactly like the marker or cannot be read
    """
    outputs = {}
    for entry in sorted(Path(run_dir).iterdir(), key=lambda p: p.name):
        if not entry.is_file() or not entry.name.startswith(output_marker):
            continue
        name = entry.name[len(output_marker):]
        if not name:
            raise TableAssemblyFailure(
                f"Output file {entry} has no name after the '{output_marker}' marker"
            )
        try:
            outputs[name] = entry.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise TableAssemblyFailure(f"Cannot read output file {entry}: {e}") from e
    return outputs


def _run_environment(run_dir: Path, structured: Optional[StructuredLogger]) -> Environment:
    env_path = run_dir / RUN_ENV_FILE
    try:
        return read_env_file(env_path)
    except EnvStoreError as e:
        logger.error("Cannot read run environment", extra={"run": run_dir.name, "error": str(e)})
        if structured:
            structured.error(MessageCode.TBL003, "Run environment unreadable", run_id=run_dir.name, error=str(e))
        return Environment()


def collect_table(
    series_dir: Path,
    output_marker: str = OUTPUT_MARKER,
    structured: Optional[StructuredLogger] = None,
) -> TableData:
    """
    Build the result table of a series.

    Every run contributes one row made of its environment variables followed
    by its outputs. An output with the same name as a variable replaces the
    variable's value.

    Args:
        series_dir: Series directory containing runs/
        output_marker: File name prefix of output files
        structured: Optional series log to record assembly events in

    Raises:
        TableAssemblyFailure: If the series has no runs directory or an output file is invalid
    """
    table = TableData()
    runs = run_directories(series_dir)

    timer_log = structured or StructuredLogger(console=False)
    with PerformanceTimer(timer_log, MessageCode.PRF001, "Table assembly", series=str(series_dir)):
        for run_dir in runs:
            row = _run_environment(run_dir, structured).to_dict()
            outputs = collect_run_outputs(run_dir, output_marker)
            for name in outputs:
                if name in row:
                    logger.warning("Output shadows variable", extra={"run": run_dir.name, "output": name})
                    if structured:
                        structured.warning(
                            MessageCode.TBL002, "Output shadows variable",
                            run_id=run_dir.name, output=name,
                        )
            row.update(outputs)
            table.add_row(row)

    if structured:
        structured.info(
            MessageCode.TBL001, "Outputs collected",
            series=str(series_dir), runs=len(table.rows), columns=len(table.columns),
        )
    logger.info("Collected outputs", extra={"runs": len(table.rows), "columns": len(table.columns)})
    return table


def write_csv(table: TableData, path: Path) -> Path:
    """Write `table` as CSV with a header line."""
    path = Path(path)
    try:
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, lineterminator="\n")
            writer.writerow(table.columns)
            for row in table.rows:
                writer.writerow(table.cells(row))
    except OSError as e:
        raise TableAssemblyFailure(f"Cannot write table to {path}: {e}") from e
    return path

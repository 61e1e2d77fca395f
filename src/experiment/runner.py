"""
Experiment runner.

Creates a series directory for an experiment source, plans every
environment x repetition and executes the runs sequentially.
"""

import random
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from envs.algebra import Environment
from envs.store import EnvFileStore
from errors import ExomatError, RunError
from experiment.executor import RunExecutor
from experiment.models import ExperimentConfig, RunOutcome, SeriesResult
from experiment.planner import plan_runs, shuffle_runs
from experiment.series import (
    SeriesContext,
    build_series_directory,
    generate_series_path,
    log_series_event,
    validate_source_directory,
)
from experiment.table import collect_run_outputs
from logging_config import LogLevel, MessageCode, PerformanceTimer
from utils.fs_names import (
    OUTPUT_MARKER,
    SERIES_EXOMAT_LOG,
    SERIES_RUNS_DIR,
    SERIES_SRC_DIR,
    SERIES_STDERR_LOG,
    SERIES_STDOUT_LOG,
    SRC_ENV_DIR,
    SRC_TEMPLATE_DIR,
)
from utils.ops_logger import get_ops_logger

logger = get_ops_logger("runner")


class ExperimentRunner:
    """
    Runs every environment of an experiment a number of times.

    Example:
        config = ExperimentConfig(source_dir="matmul", repetitions=3, seed=7)
        runner = ExperimentRunner(config)
        result = runner.run_all()
        print(result.series_dir)
    """

    def __init__(
        self,
        config: ExperimentConfig,
        on_run_finished: Optional[Callable[[RunOutcome], None]] = None,
        console: bool = True,
        min_level: LogLevel = LogLevel.INFO,
        max_runs: Optional[int] = None,
    ):
        """
        Initialize experiment runner.

        Args:
            config: Experiment configuration
            on_run_finished: Called after every successful run (progress display)
            console: Whether to echo the series log to stdout
            min_level: Minimum level of series log entries
            max_runs: Stop after this many runs
        """
        self.config = config
        self.on_run_finished = on_run_finished
        self.console = console
        self.min_level = min_level
        self.max_runs = max_runs

        validate_source_directory(config.source_dir)
        self.series_dir = Path(config.output_dir or generate_series_path(config.source_dir))
        self.result = SeriesResult(config=config, series_dir=self.series_dir)

    def _record(self, outcome: RunOutcome) -> None:
        self.result.outcomes.append(outcome)
        if self.on_run_finished:
            self.on_run_finished(outcome)

    def run_all(self) -> SeriesResult:
        """
        Create the series directory and execute all runs.

        Returns:
            SeriesResult with one outcome per executed run

        Raises:
            SeriesError: If the series directory cannot be created
            PlanningFailure: If there is nothing to run
            RunError: On the first failing run; later runs are not started
        """
        build_series_directory(self.config.source_dir, self.series_dir)
        backup = self.series_dir / SERIES_SRC_DIR

        with SeriesContext.open(self.series_dir, console=self.console, min_level=self.min_level) as series:
            log_series_event(series, MessageCode.SER004, "Series directory created")

            try:
                with PerformanceTimer(series.logger, MessageCode.PRF001, "Planning"):
                    environments = EnvFileStore(backup / SRC_ENV_DIR).read_named()
                    planned = plan_runs(
                        environments,
                        self.config.repetitions,
                        self.series_dir / SERIES_RUNS_DIR,
                    )
            except ExomatError as e:
                log_series_event(series, MessageCode.SER003, "Series aborted", error=str(e))
                raise

            self.result.planned = planned
            order = planned
            if self.config.shuffle:
                order = shuffle_runs(planned, random.Random(self.config.seed))

            log_series_event(
                series,
                MessageCode.SER001,
                "Series started",
                environments=len(environments),
                repetitions=self.config.repetitions,
                runs=len(order),
            )

            executor = RunExecutor(
                series,
                template_dir=backup / SRC_TEMPLATE_DIR,
                source_dir=self.config.source_dir,
                on_run_finished=self._record,
                max_runs=self.max_runs,
            )
            self.result.started_at = datetime.now()
            try:
                executor.execute(order)
            except RunError as e:
                log_series_event(series, MessageCode.SER003, "Series aborted", run_id=e.run_id, error=e.reason)
                raise

            self.result.completed_at = datetime.now()
            log_series_event(series, MessageCode.SER002, "Series finished", runs=self.result.total_runs)

        logger.info("Series finished", extra={"series": str(self.series_dir), "runs": self.result.total_runs})
        return self.result


@dataclass
class TrialReport:
    """Everything a single trial run produced."""

    experiment: str
    series_log: str = ""
    stdout: str = ""
    stderr: str = ""
    outputs: Dict[str, str] = field(default_factory=dict)
    environment: Optional[Environment] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def render(self) -> str:
        """Plain text report, one section per stream."""
        name = self.experiment
        lines = [f"[{name}] exomat:", self.series_log.rstrip("\n"), "---"]
        lines += [f"[{name}] stdout:", self.stdout.rstrip("\n"), "---"]
        lines += [f"[{name}] stderr:", self.stderr.rstrip("\n"), "---"]
        if self.outputs:
            for output, content in self.outputs.items():
                lines += [f"[{name}] {output}:", content, ""]
        else:
            lines.append(f"[{name}] created no output files")
        lines.append("---")
        lines.append(f"[{name}] returned:")
        lines.append("Successful" if self.succeeded else f"Failed (reason: {self.error})")
        return "\n".join(lines) + "\n"


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace") if path.is_file() else ""


def run_trial(source_dir: Path, output_marker: str = OUTPUT_MARKER) -> TrialReport:
    """
    Run the first environment of an experiment once in a temporary series.

    A failing run is recorded in the report rather than raised. The
    temporary series directory is removed afterwards.

    Raises:
        SeriesError: If the source directory is unusable
        PlanningFailure: If the experiment has no environments
    """
    source_dir = validate_source_directory(source_dir)
    report = TrialReport(experiment=source_dir.resolve().name)

    with tempfile.TemporaryDirectory(prefix="exomat_trial-") as tmp:
        series_dir = Path(tmp) / report.experiment
        config = ExperimentConfig(source_dir=source_dir, output_dir=series_dir, shuffle=False)
        runner = ExperimentRunner(config, console=False, min_level=LogLevel.DEBUG, max_runs=1)

        try:
            result = runner.run_all()
        except RunError as e:
            report.error = str(e)
            result = runner.result

        if result.planned:
            first = result.planned[0]
            report.environment = first.environment
            if first.run_dir.is_dir():
                report.outputs = {
                    f"{output_marker}{name}": value
                    for name, value in collect_run_outputs(first.run_dir, output_marker).items()
                }

        runs_dir = series_dir / SERIES_RUNS_DIR
        report.series_log = _read(runs_dir / SERIES_EXOMAT_LOG)
        report.stdout = _read(runs_dir / SERIES_STDOUT_LOG)
        report.stderr = _read(runs_dir / SERIES_STDERR_LOG)

    logger.info("Trial finished", extra={"experiment": report.experiment, "succeeded": report.succeeded})
    return report

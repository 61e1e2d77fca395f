"""
Sequential run execution.

Each run gets its own directory with a copy of the template and an
environment.env file, then `./run.sh` is executed there. The first failing
run stops the series; directories of earlier runs are left in place.
"""

import os
import re
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from errors import RunProcessFailure, RunSetupFailure
from experiment.models import RunDescriptor, RunOutcome, RunState
from experiment.series import SeriesContext, copy_tree_writable
from logging_config import LogLevel, MessageCode
from utils.fs_names import (
    EXP_SRC_DIR_VAR,
    MARKER_RUN,
    REPETITION_VAR,
    RUN_ENV_FILE,
    RUN_RUN_FILE,
)
from utils.ops_logger import get_ops_logger

logger = get_ops_logger("executor")

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")


def clean_stderr(text: str) -> str:
    """
    Strip ANSI escape sequences and surrounding whitespace.

    Run output is decoded with surrogateescape so undecodable bytes reach the
    series logs unchanged; here they become U+FFFD for use in messages.
    """
    text = (text or "").encode("utf-8", "surrogateescape").decode("utf-8", "replace")
    return ANSI_ESCAPE.sub("", text).strip()


class RunExecutor:
    """
    Executes planned runs one after another.

    Example:
        with SeriesContext.open(series_dir) as series:
            executor = RunExecutor(series, series_dir / ".src" / "template", source_dir)
            outcomes = executor.execute(runs)
    """

    def __init__(
        self,
        series: SeriesContext,
        template_dir: Path,
        source_dir: Path,
        on_run_finished: Optional[Callable[[RunOutcome], None]] = None,
        max_runs: Optional[int] = None,
    ):
        """
        Args:
            series: Log streams of the series
            template_dir: Directory copied into every run directory
            source_dir: Experiment source, exported to run.sh as EXP_SRC_DIR
            on_run_finished: Called with every successful outcome
            max_runs: Stop after this many runs
        """
        self.series = series
        self.template_dir = Path(template_dir)
        self.source_dir = Path(source_dir).resolve()
        self.on_run_finished = on_run_finished
        self.max_runs = max_runs
        self.states: dict[tuple[str, int], RunState] = {}

    def _set_state(self, run: RunDescriptor, state: RunState) -> None:
        self.states[run.identity] = state
        logger.debug("Run state changed", extra={"run_id": run.run_id, "state": state.value})

    def execute(self, runs: Iterable[RunDescriptor]) -> List[RunOutcome]:
        """
        Execute `runs` in the given order.

        Raises:
            RunSetupFailure: If a run directory could not be prepared
            RunProcessFailure: If a run script failed or could not be spawned
        """
        runs = list(runs)
        for run in runs:
            self._set_state(run, RunState.PENDING)

        outcomes = []
        for run in runs:
            if self.max_runs is not None and len(outcomes) >= self.max_runs:
                break
            outcome = self.execute_one(run)
            outcomes.append(outcome)
            if self.on_run_finished:
                self.on_run_finished(outcome)
        return outcomes

    def prepare(self, run: RunDescriptor) -> None:
        """Create the run directory with template copy and environment file."""
        try:
            run.run_dir.mkdir()
        except OSError as e:
            raise RunSetupFailure(run.run_id, f"cannot create {run.run_dir}: {e}") from e
        self._set_state(run, RunState.DIR_CREATED)

        try:
            copy_tree_writable(self.template_dir, run.run_dir)
            (run.run_dir / MARKER_RUN).touch()
        except OSError as e:
            raise RunSetupFailure(run.run_id, f"cannot copy template: {e}") from e
        self._set_state(run, RunState.TEMPLATE_COPIED)

        environment = run.environment.with_value(REPETITION_VAR, str(run.repetition))
        try:
            (run.run_dir / RUN_ENV_FILE).write_text(environment.to_text(), encoding="utf-8")
        except OSError as e:
            raise RunSetupFailure(run.run_id, f"cannot write {RUN_ENV_FILE}: {e}") from e
        self._set_state(run, RunState.ENV_WRITTEN)

    def execute_one(self, run: RunDescriptor) -> RunOutcome:
        """
        Prepare and execute a single run, appending its output to the series logs.

        Raises:
            RunSetupFailure: If the run directory could not be prepared
            RunProcessFailure: If the script exited nonzero or could not be spawned
        """
        context = {"run_id": run.run_id, "env": run.env_name, "repetition": run.repetition}

        try:
            self.prepare(run)
        except RunSetupFailure as e:
            self._set_state(run, RunState.FAILED)
            self.series.logger.error(MessageCode.RUN003, "Run setup failed", error=e.reason, **context)
            raise

        logger.debug("Run started", extra={"run_id": run.run_id})
        self._set_state(run, RunState.EXECUTING)

        env = dict(os.environ)
        env[EXP_SRC_DIR_VAR] = str(self.source_dir)

        started_at = datetime.now()
        try:
            proc = subprocess.run(
                [f"./{RUN_RUN_FILE}"],
                cwd=run.run_dir,
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                encoding="utf-8",
                errors="surrogateescape",
            )
        except OSError as e:
            finished_at = datetime.now()
            self._set_state(run, RunState.FAILED)
            self.series.logger.error(
                MessageCode.RUN002,
                "Run failed",
                started_at=started_at.isoformat(),
                finished_at=finished_at.isoformat(),
                exit_code=None,
                stderr_nonempty=False,
                error=str(e),
                **context,
            )
            raise RunProcessFailure(run.run_id, f"cannot execute {RUN_RUN_FILE}: {e}") from e
        finished_at = datetime.now()

        self.series.append_stdout(proc.stdout)
        self.series.append_stderr(proc.stderr)

        stderr_nonempty = bool(proc.stderr)
        entry = dict(
            context,
            started_at=started_at.isoformat(),
            finished_at=finished_at.isoformat(),
            exit_code=proc.returncode,
            stderr_nonempty=stderr_nonempty,
        )
        duration_ms = (finished_at - started_at).total_seconds() * 1000

        if proc.returncode != 0:
            self._set_state(run, RunState.FAILED)
            self.series.logger.log(LogLevel.ERROR, MessageCode.RUN002, "Run failed", entry, duration_ms)
            stderr = clean_stderr(proc.stderr)
            reason = f"{RUN_RUN_FILE} exited with status {proc.returncode}"
            if stderr:
                reason = f"{reason}: {stderr}"
            raise RunProcessFailure(run.run_id, reason, exit_code=proc.returncode)

        self._set_state(run, RunState.COMPLETED)
        self.series.logger.log(LogLevel.INFO, MessageCode.RUN001, "Run completed", entry, duration_ms)

        return RunOutcome(
            run=run,
            started_at=started_at,
            finished_at=finished_at,
            exit_code=proc.returncode,
            stderr_nonempty=stderr_nonempty,
            state=RunState.COMPLETED,
        )

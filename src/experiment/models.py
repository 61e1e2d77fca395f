"""
Data models for experiment series.

A series runs every environment of an experiment a number of times, each
run in its own directory.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from envs.algebra import Environment
from errors import PlanningFailure
from utils.fs_names import RUN_DIR_PREFIX


class RunState(str, Enum):
    """Lifecycle of a single run. FAILED at any point halts the series."""
    PENDING = "pending"
    DIR_CREATED = "dir_created"
    TEMPLATE_COPIED = "template_copied"
    ENV_WRITTEN = "env_written"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExperimentConfig:
    """
    Configuration for running an experiment series.

    Every environment file of the experiment is run `repetitions` times.
    """

    source_dir: Path
    repetitions: int = 1
    output_dir: Optional[Path] = None
    """Series directory to create. Defaults to <name>-<timestamp> in the cwd."""

    seed: Optional[int] = None
    """Seed for the execution order shuffle."""

    shuffle: bool = True

    def __post_init__(self):
        self.source_dir = Path(self.source_dir)
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)
        if self.repetitions < 1:
            raise PlanningFailure(f"repetitions must be at least 1, got {self.repetitions}")


@dataclass(frozen=True)
class RunDescriptor:
    """
    One (environment, repetition) execution unit.

    `env_name` and `repetition` identify the run for the lifetime of a series.
    """

    env_name: str
    repetition: int
    repetition_label: str
    """Zero-padded repetition index used in the directory name."""

    environment: Environment
    run_dir: Path

    @property
    def run_id(self) -> str:
        return run_dir_name(self.env_name, self.repetition_label)

    @property
    def identity(self) -> tuple[str, int]:
        return (self.env_name, self.repetition)


def run_dir_name(env_name: str, repetition_label: str) -> str:
    return f"{RUN_DIR_PREFIX}{env_name}_rep{repetition_label}"


@dataclass
class RunOutcome:
    """
    Result of a single executed run.
    """

    run: RunDescriptor
    started_at: datetime
    finished_at: datetime
    exit_code: Optional[int]
    """None if the script could not be spawned."""

    stderr_nonempty: bool = False
    state: RunState = RunState.COMPLETED

    @property
    def succeeded(self) -> bool:
        """Whether the run script exited with status 0."""
        return self.state == RunState.COMPLETED and self.exit_code == 0


@dataclass
class SeriesResult:
    """
    Complete results of one series.
    """

    config: ExperimentConfig
    series_dir: Path
    planned: List[RunDescriptor] = field(default_factory=list)
    outcomes: List[RunOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def total_runs(self) -> int:
        """Number of runs that were executed."""
        return len(self.outcomes)

    @property
    def successful_runs(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def is_complete(self) -> bool:
        """Whether all planned runs have been executed successfully."""
        return bool(self.planned) and self.successful_runs == len(self.planned)

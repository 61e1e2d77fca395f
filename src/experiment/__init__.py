"""
Experiment series module.

Plan, execute and aggregate experiment series.
"""

from experiment.executor import RunExecutor
from experiment.models import (
    ExperimentConfig,
    RunDescriptor,
    RunOutcome,
    RunState,
    SeriesResult,
)
from experiment.planner import plan_runs, repetition_width, shuffle_runs
from experiment.runner import ExperimentRunner, TrialReport, run_trial
from experiment.series import SeriesContext, build_series_directory, generate_series_path
from experiment.skeleton import create_source_directory, find_marker
from experiment.table import TableData, collect_table, write_csv

__all__ = [
    # Models
    "ExperimentConfig",
    "RunDescriptor",
    "RunOutcome",
    "RunState",
    "SeriesResult",
    # Planning
    "plan_runs",
    "repetition_width",
    "shuffle_runs",
    # Series
    "SeriesContext",
    "build_series_directory",
    "generate_series_path",
    # Execution
    "RunExecutor",
    "ExperimentRunner",
    "TrialReport",
    "run_trial",
    # Scaffolding
    "create_source_directory",
    "find_marker",
    # Aggregation
    "TableData",
    "collect_table",
    "write_csv",
]

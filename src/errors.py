"""
Exception hierarchy for exomat.

Every failure surfaced to the CLI derives from ExomatError so the entry point
can report it and exit nonzero. Errors carry enough detail to identify the
offending variable, file or run.
"""

from typing import Optional


class ExomatError(Exception):
    """Base class for all exomat errors."""


# Environment algebra


class EnvAlgebraError(ExomatError):
    """Invalid combination or construction of environment sets."""


class VariableSetMismatch(EnvAlgebraError):
    """Union of environment sets with different variable names."""


class VariableNameCollision(EnvAlgebraError):
    """Cross product of environment sets sharing variable names."""


class EmptyEnvironmentSet(EnvAlgebraError):
    """A combinator was given an empty environment set."""


class InvalidVariableName(EnvAlgebraError):
    """Variable name is malformed or reserved."""


class CommandOutputFailure(EnvAlgebraError):
    """Command used to generate values could not be run or failed."""


class EnvSpecError(EnvAlgebraError):
    """Malformed environment algebra file."""


# Environment file store


class EnvStoreError(ExomatError):
    """Failed edit of an environment file store."""


class DuplicateVariable(EnvStoreError):
    """Variable to add is already present."""


class UnknownVariable(EnvStoreError):
    """Variable to edit is not present in any environment."""


class UnknownValue(EnvStoreError):
    """Value to remove is not present in any environment."""


class StoreIOFailure(EnvStoreError):
    """Environment files could not be read, parsed or written."""


# Planning and execution


class PlanningFailure(ExomatError):
    """No environments or no repetitions to plan."""


class SeriesError(ExomatError):
    """Experiment series directory could not be created."""


class SeriesAlreadyExists(SeriesError):
    """Target series path already exists."""


class InvalidExperimentSource(SeriesError):
    """Path is not a usable experiment source directory."""


class RunError(ExomatError):
    """A single run failed; aborts the whole series."""

    def __init__(self, run_id: str, reason: str):
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Run {run_id} failed: {reason}")


class RunSetupFailure(RunError):
    """Run directory, template copy or environment file could not be created."""


class RunProcessFailure(RunError):
    """Run script exited nonzero or could not be spawned."""

    def __init__(self, run_id: str, reason: str, exit_code: Optional[int] = None):
        self.exit_code = exit_code
        super().__init__(run_id, reason)


# Aggregation and misc


class TableAssemblyFailure(ExomatError):
    """Series outputs could not be assembled into a table."""


class MarkerNotFound(ExomatError):
    """No enclosing experiment or series directory was found."""


class SettingsError(ExomatError):
    """Invalid experiment settings file."""

"""
Run planning.

Expands environments x repetitions into run descriptors in env-major order
(all repetitions of the first environment, then the next, ...). Execution
order is shuffled afterwards; names are fixed before shuffling, so the order
only affects wall-clock execution.
"""

import random
from pathlib import Path
from typing import Optional, Sequence

from envs.algebra import Environment
from errors import PlanningFailure
from experiment.models import RunDescriptor, run_dir_name


def repetition_width(repetitions: int) -> int:
    """Digits needed for the largest repetition index (1000 -> 3)."""
    return max(len(str(repetitions - 1)), 1)


def plan_runs(
    environments: Sequence[tuple[str, Environment]],
    repetitions: int,
    runs_dir: Path,
) -> list[RunDescriptor]:
    """
    Create one descriptor per (environment, repetition), env-major.

    Args:
        environments: (name, environment) pairs, usually env file stems in file order
        repetitions: Runs per environment
        runs_dir: Directory the run directories will be created in

    Raises:
        PlanningFailure: If there are no environments or no repetitions
    """
    if not environments:
        raise PlanningFailure(f"No environments found for {runs_dir}")
    if repetitions < 1:
        raise PlanningFailure(f"repetitions must be at least 1, got {repetitions}")

    width = repetition_width(repetitions)
    runs = []
    for env_name, environment in environments:
        for repetition in range(repetitions):
            label = f"{repetition:0{width}d}"
            runs.append(RunDescriptor(
                env_name=env_name,
                repetition=repetition,
                repetition_label=label,
                environment=environment,
                run_dir=Path(runs_dir) / run_dir_name(env_name, label),
            ))
    return runs


def shuffle_runs(
    runs: Sequence[RunDescriptor],
    rng: Optional[random.Random] = None,
) -> list[RunDescriptor]:
    """Return a uniformly shuffled copy of `runs`."""
    rng = rng or random.Random()
    order = list(runs)
    rng.shuffle(order)
    return order

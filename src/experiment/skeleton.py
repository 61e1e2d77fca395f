"""
Experiment source scaffolding and marker lookup.
"""

import os
from pathlib import Path
from typing import Optional

from errors import InvalidExperimentSource, MarkerNotFound
from experiment.series import copy_tree_writable
from utils.fs_names import (
    MARKER_SRC,
    SRC_ENV_DIR,
    SRC_ENV_FILE,
    SRC_RUN_FILE,
    SRC_TEMPLATE_DIR,
)
from utils.ops_logger import get_ops_logger

logger = get_ops_logger("skeleton")

DEFAULT_RUN_SCRIPT = """#!/usr/bin/env bash
# Executed once per run inside the run directory.
# Every variable of the run's environment is listed in environment.env,
# the experiment source directory is available as $EXP_SRC_DIR.
set -euo pipefail

set -a
source ./environment.env
set +a

# Write results to files named out_<NAME>, e.g.:
# echo "$REPETITION" > out_repetition
"""


def user_template_dir() -> Optional[Path]:
    """
    Custom template directory, if one is configured.

    $EXOMAT_TEMPLATE_DIR takes precedence over ~/.config/exomat/template.
    """
    configured = os.environ.get("EXOMAT_TEMPLATE_DIR")
    if configured:
        path = Path(configured).expanduser()
        return path if path.is_dir() else None

    default = Path.home() / ".config" / "exomat" / "template"
    return default if default.is_dir() else None


def create_source_directory(path: Path) -> Path:
    """
    Create an empty experiment source directory.

        EXPERIMENT/
          .exomat_source
          envs/0.env          (empty)
          template/run.sh     (executable)

    The template is copied from the user template directory if one exists.

    Raises:
        InvalidExperimentSource: If `path` exists or cannot be created
    """
    path = Path(path)
    if path.exists():
        raise InvalidExperimentSource(f"{path} already exists")

    template_dir = path / SRC_TEMPLATE_DIR
    custom = user_template_dir()
    try:
        path.mkdir(parents=True)
        (path / MARKER_SRC).touch()
        (path / SRC_ENV_DIR).mkdir()
        (path / SRC_ENV_DIR / SRC_ENV_FILE).touch()
        template_dir.mkdir()

        if custom:
            copy_tree_writable(custom, template_dir)
            logger.info("Copied custom template", extra={"template": str(custom)})
        else:
            run_file = template_dir / SRC_RUN_FILE
            run_file.write_text(DEFAULT_RUN_SCRIPT, encoding="utf-8")
            run_file.chmod(0o775)
    except OSError as e:
        raise InvalidExperimentSource(f"Cannot create experiment {path}: {e}") from e

    logger.info("Experiment created", extra={"experiment": str(path)})
    return path


def find_marker(start: Path, marker: str) -> Path:
    """
    Find the closest directory at or above `start` that contains `marker`.

    Raises:
        MarkerNotFound: If no directory up to the filesystem root has the marker
    """
    location = Path(start).resolve()
    if not location.is_dir():
        raise MarkerNotFound(f"{start} does not exist or is not a directory")

    for directory in (location, *location.parents):
        if (directory / marker).is_file():
            logger.debug("Found marker", extra={"marker": marker, "directory": str(directory)})
            return directory

    raise MarkerNotFound(f"No {marker} found in {location} or any parent directory")

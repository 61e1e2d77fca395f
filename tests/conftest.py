"""Pytest configuration for tests."""

import os
import stat
import sys
from pathlib import Path

import pytest

# Add src directory to Python path for all tests
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from utils.fs_names import MARKER_SRC, SRC_ENV_DIR, SRC_RUN_FILE, SRC_TEMPLATE_DIR


def write_script(path: Path, body: str) -> Path:
    """Write an executable bash script."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/usr/bin/env bash\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def make_experiment(root: Path, envs: list[str], script: str, name: str = "exp") -> Path:
    """
    Create an experiment source directory.

    Args:
        root: Parent directory
        envs: Contents of 0.env, 1.env, ...
        script: Body of template/run.sh
    """
    source = root / name
    (source / SRC_ENV_DIR).mkdir(parents=True)
    (source / MARKER_SRC).touch()
    for index, content in enumerate(envs):
        (source / SRC_ENV_DIR / f"{index}.env").write_text(content)
    write_script(source / SRC_TEMPLATE_DIR / SRC_RUN_FILE, script)
    return source


@pytest.fixture
def experiment_factory(tmp_path):
    """Build experiment source directories inside tmp_path."""
    def factory(envs, script="echo ok\n", name="exp"):
        return make_experiment(tmp_path, envs, script, name)
    return factory


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep user template and log directories out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("EXOMAT_TEMPLATE_DIR", raising=False)
    monkeypatch.delenv("EXOMAT_LOG_TO_FILE", raising=False)
    if os.environ.get("EXOMAT_LOG_LEVEL") is None:
        monkeypatch.setenv("EXOMAT_LOG_LEVEL", "WARNING")
    yield home

"""
End-to-end tests: edit environments, run a series with real shell scripts,
aggregate the outputs.
"""

import json

import pytest

from envs.store import EnvFileStore
from errors import RunProcessFailure
from experiment.models import ExperimentConfig
from experiment.runner import ExperimentRunner
from experiment.skeleton import create_source_directory
from experiment.table import collect_table, write_csv


def run_entries(series_dir):
    lines = (series_dir / "runs" / "exomat.log").read_text().splitlines()
    return [e for e in map(json.loads, lines) if e["code"].startswith("RUN")]


@pytest.fixture
def source(tmp_path):
    source = create_source_directory(tmp_path / "sweep")
    (source / "template" / "run.sh").write_text(
        "#!/usr/bin/env bash\n"
        "set -e\n"
        "source ./environment.env\n"
        "echo \"$MODE $REPETITION\"\n"
        "echo \"$MODE-$REPETITION\" > out_tag\n"
        "if [ \"$MODE\" = \"$FAIL_MODE\" ] && [ \"$REPETITION\" = \"$FAIL_REP\" ]; then exit 9; fi\n"
    )
    return source


class TestSeriesEndToEnd:
    """Full series runs."""

    def test_two_environments_three_repetitions(self, tmp_path, source):
        EnvFileStore(source / "envs").add("MODE", ["fast", "slow"])
        series = tmp_path / "series"

        result = ExperimentRunner(
            ExperimentConfig(source_dir=source, repetitions=3, output_dir=series, seed=5),
            console=False,
        ).run_all()

        run_dirs = sorted(p.name for p in (series / "runs").iterdir() if p.is_dir())
        assert run_dirs == [
            "run_0_rep0", "run_0_rep1", "run_0_rep2",
            "run_1_rep0", "run_1_rep1", "run_1_rep2",
        ]
        entries = run_entries(series)
        assert len(entries) == 6
        assert all(e["code"] == "RUN001" for e in entries)
        assert {e["context"]["run_id"] for e in entries} == set(run_dirs)
        assert result.successful_runs == 6

        stdout_lines = (series / "runs" / "stdout.log").read_text().splitlines()
        assert sorted(stdout_lines) == sorted(
            f"{mode} {rep}" for mode in ("fast", "slow") for rep in range(3)
        )

        table = collect_table(series)
        assert table.columns == ["MODE", "REPETITION", "tag"]
        assert table.column("tag") == ["fast-0", "fast-1", "fast-2", "slow-0", "slow-1", "slow-2"]
        csv_text = write_csv(table, series / "series.csv").read_text()
        assert csv_text.splitlines()[1] == "fast,0,fast-0"

    def test_failure_halts_before_next_environment(self, tmp_path, source, monkeypatch):
        EnvFileStore(source / "envs").add("MODE", ["fast", "slow"])
        monkeypatch.setenv("FAIL_MODE", "fast")
        monkeypatch.setenv("FAIL_REP", "1")
        series = tmp_path / "series"
        runner = ExperimentRunner(
            ExperimentConfig(source_dir=source, repetitions=3, output_dir=series, shuffle=False),
            console=False,
        )

        with pytest.raises(RunProcessFailure) as exc_info:
            runner.run_all()

        assert exc_info.value.run_id == "run_0_rep1"
        assert exc_info.value.exit_code == 9
        run_dirs = sorted(p.name for p in (series / "runs").iterdir() if p.is_dir())
        assert run_dirs == ["run_0_rep0", "run_0_rep1"]
        assert [e["code"] for e in run_entries(series)] == ["RUN001", "RUN002"]
        assert runner.result.total_runs == 1

    def test_edits_after_series_do_not_affect_it(self, tmp_path, source):
        store = EnvFileStore(source / "envs")
        store.add("MODE", ["fast"])
        series = tmp_path / "series"
        ExperimentRunner(
            ExperimentConfig(source_dir=source, output_dir=series),
            console=False,
        ).run_all()

        store.append("MODE", ["slow"])

        assert len(store.env_files()) == 2
        assert len(EnvFileStore(series / ".src" / "envs").env_files()) == 1

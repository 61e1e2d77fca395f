"""Unit tests for ExperimentRunner and trial runs."""

import json

import pytest

from errors import InvalidExperimentSource, PlanningFailure, RunProcessFailure, SeriesAlreadyExists
from experiment.models import ExperimentConfig
from experiment.runner import ExperimentRunner, TrialReport, run_trial


def series_log(series_dir):
    lines = (series_dir / "runs" / "exomat.log").read_text().splitlines()
    return [json.loads(line) for line in lines]


class TestExperimentRunner:
    """Tests for running whole series."""

    def test_runs_every_environment(self, tmp_path, experiment_factory):
        source = experiment_factory(["N=0\n", "N=1\n"], script="source ./environment.env\necho $N > out_n\n")
        config = ExperimentConfig(source_dir=source, repetitions=2, output_dir=tmp_path / "series", seed=3)

        result = ExperimentRunner(config, console=False).run_all()

        assert result.total_runs == 4
        assert result.is_complete
        assert result.completed_at is not None
        run_dirs = sorted(p.name for p in (tmp_path / "series" / "runs").iterdir() if p.is_dir())
        assert run_dirs == ["run_0_rep0", "run_0_rep1", "run_1_rep0", "run_1_rep1"]
        assert (tmp_path / "series" / "runs" / "run_1_rep0" / "out_n").read_text() == "1\n"

    def test_series_log_lifecycle(self, tmp_path, experiment_factory):
        source = experiment_factory(["N=0\n"])
        config = ExperimentConfig(source_dir=source, repetitions=2, output_dir=tmp_path / "series")

        ExperimentRunner(config, console=False).run_all()

        codes = [entry["code"] for entry in series_log(tmp_path / "series")]
        assert codes == ["SER004", "SER001", "RUN001", "RUN001", "SER002"]

    def test_seed_fixes_execution_order(self, tmp_path, experiment_factory):
        source = experiment_factory(["N=0\n", "N=1\n", "N=2\n"])
        orders = []
        for name in ("a", "b"):
            config = ExperimentConfig(source_dir=source, repetitions=3, output_dir=tmp_path / name, seed=11)
            result = ExperimentRunner(config, console=False).run_all()
            orders.append([o.run.identity for o in result.outcomes])
        assert orders[0] == orders[1]

    def test_failure_aborts_series(self, tmp_path, experiment_factory):
        source = experiment_factory(["N=0\n", "N=1\n"], script="exit 2\n")
        config = ExperimentConfig(source_dir=source, output_dir=tmp_path / "series", shuffle=False)
        runner = ExperimentRunner(config, console=False)

        with pytest.raises(RunProcessFailure):
            runner.run_all()

        assert runner.result.total_runs == 0
        assert not (tmp_path / "series" / "runs" / "run_1_rep0").exists()
        entries = series_log(tmp_path / "series")
        assert entries[-1]["code"] == "SER003"
        assert entries[-1]["context"]["run_id"] == "run_0_rep0"

    def test_no_environments(self, tmp_path, experiment_factory):
        source = experiment_factory([])
        config = ExperimentConfig(source_dir=source, output_dir=tmp_path / "series")

        with pytest.raises(PlanningFailure):
            ExperimentRunner(config, console=False).run_all()

        assert series_log(tmp_path / "series")[-1]["code"] == "SER003"

    def test_existing_series_directory(self, tmp_path, experiment_factory):
        source = experiment_factory(["N=0\n"])
        (tmp_path / "series").mkdir()
        config = ExperimentConfig(source_dir=source, output_dir=tmp_path / "series")

        with pytest.raises(SeriesAlreadyExists):
            ExperimentRunner(config, console=False).run_all()

    def test_invalid_source(self, tmp_path):
        with pytest.raises(InvalidExperimentSource):
            ExperimentRunner(ExperimentConfig(source_dir=tmp_path / "nope"))

    def test_default_series_location(self, tmp_path, monkeypatch, experiment_factory):
        source = experiment_factory(["N=0\n"], name="matmul")
        workdir = tmp_path / "work"
        workdir.mkdir()
        monkeypatch.chdir(workdir)

        result = ExperimentRunner(ExperimentConfig(source_dir=source), console=False).run_all()

        assert result.series_dir.parent == workdir.resolve()
        assert result.series_dir.name.startswith("matmul-")


class TestRunTrial:
    """Tests for trial runs."""

    def test_successful_trial(self, experiment_factory):
        source = experiment_factory(
            ["N=7\n", "N=8\n"],
            script="source ./environment.env\necho hello\necho $N > out_n\n",
            name="demo",
        )

        report = run_trial(source)

        assert report.succeeded
        assert report.experiment == "demo"
        assert report.stdout == "hello\n"
        assert report.outputs == {"out_n": "7"}
        assert report.environment.get("N") == "7"
        assert "RUN001" in report.series_log

    def test_failed_trial_is_reported(self, experiment_factory):
        source = experiment_factory(["N=7\n"], script="echo bad >&2\nexit 1\n")

        report = run_trial(source)

        assert not report.succeeded
        assert "bad" in report.error
        assert report.stderr == "bad\n"

    def test_render(self):
        report = TrialReport(experiment="demo", stdout="hi\n", outputs={"out_n": "7"})
        text = report.render()
        assert "[demo] stdout:\nhi\n---" in text
        assert "[demo] out_n:\n7\n" in text
        assert text.endswith("[demo] returned:\nSuccessful\n")

    def test_render_without_outputs(self):
        text = TrialReport(experiment="demo", error="Run x failed: boom").render()
        assert "[demo] created no output files" in text
        assert "Failed (reason: Run x failed: boom)" in text

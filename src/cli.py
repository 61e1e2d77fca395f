"""exomat CLI - Command-line interface for running experiment series.

This CLI provides commands to scaffold an experiment, edit its environment
files, run it as a series and collect the series outputs into a table.
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from envs.spec_file import evaluate_env_spec
from envs.store import EnvFileStore
from errors import EnvStoreError, ExomatError
from experiment.models import ExperimentConfig
from experiment.runner import ExperimentRunner, run_trial
from experiment.skeleton import create_source_directory, find_marker
from experiment.table import collect_table, write_csv
from logging_config import LogLevel
from utils.config_parser import load_settings
from utils.fs_names import MARKER_SERIES, MARKER_SRC, SERIES_SRC_DIR, SRC_ENV_DIR
from utils.ops_logger import set_console_level

app = typer.Typer(
    name="exomat",
    help="exomat - Run shell experiments over every combination of environment variables",
    add_completion=False,
)

console = Console()
state = {"verbose": False}


def _handle_error(e: ExomatError, action: str) -> None:
    """Print an exomat error and exit nonzero."""
    console.print(f"[red]Error {action}:[/red] {escape(str(e))}")
    raise typer.Exit(1)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
) -> None:
    """exomat - experiment harness."""
    state["verbose"] = verbose
    if verbose:
        set_console_level(logging.DEBUG)
    elif quiet:
        set_console_level(logging.WARNING)


@app.command()
def skeleton(
    experiment: Path = typer.Argument(
        ...,
        help="Directory to create the experiment in",
    ),
) -> None:
    """Create an empty experiment source directory.

    Example:
        exomat skeleton matmul
    """
    try:
        create_source_directory(experiment)
    except ExomatError as e:
        _handle_error(e, "creating experiment")

    console.print(f"[green]Experiment created under {escape(str(experiment))}[/green]")
    console.print()
    console.print("next steps:")
    console.print("1. add variables with:")
    console.print("   exomat env --add COUNT=1 --add COUNT=2")
    console.print("2. adjust script in template/run.sh")
    console.print("3. execute experiment with:")
    console.print(f"   exomat run {escape(str(experiment))}")


def _group_assignments(items: List[str], option: str, value_required: bool = True) -> dict[str, list[str]]:
    """Group repeated VAR=VALUE options by variable, keeping first-seen order."""
    grouped: dict[str, list[str]] = {}
    for item in items:
        if "=" in item:
            var, value = item.split("=", 1)
        elif value_required:
            raise EnvStoreError(f"{option} expects VAR=VALUE, got '{item}'")
        else:
            var, value = item, None
        values = grouped.setdefault(var, [])
        if value is not None:
            values.append(value)
    return grouped


def _print_environments(store: EnvFileStore) -> None:
    env_set = store.read()
    names = [path.name for path in store.env_files()]
    if not names:
        console.print("[dim]No environment files found[/dim]")
        return

    variables = list(env_set[0].names) if env_set else []
    table = Table(title=f"Environments ({len(names)})")
    table.add_column("File", style="cyan")
    for var in variables:
        table.add_column(var)
    for name, env in zip(names, env_set):
        table.add_row(name, *(env.get(var, "") for var in variables))
    console.print(table)


@app.command()
def env(
    add: Optional[List[str]] = typer.Option(
        None,
        "--add",
        help="Add a new variable: VAR=VALUE, repeat once per value",
    ),
    append: Optional[List[str]] = typer.Option(
        None,
        "--append",
        help="Add values to an existing variable: VAR=VALUE, repeat once per value",
    ),
    remove: Optional[List[str]] = typer.Option(
        None,
        "--remove",
        help="Remove a variable (VAR) or only the environments where it has a value (VAR=VALUE)",
    ),
    generate: Optional[Path] = typer.Option(
        None,
        "--generate",
        help="Replace all environment files with the result of an algebra YAML file",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """Show or edit the environments of the current experiment.

    Must be called from inside an experiment source directory. Without
    options all environments are listed.

    Example:
        exomat env --add SIZE=64 --add SIZE=128
        exomat env --append SIZE=256 --remove THREADS=1
    """
    try:
        source_dir = find_marker(Path.cwd(), MARKER_SRC)
        store = EnvFileStore(source_dir / SRC_ENV_DIR)

        if not (add or append or remove or generate):
            _print_environments(store)
            return

        if generate:
            env_set = store.generate(evaluate_env_spec(generate))
            console.print(f"[green]Generated {len(env_set)} environment(s)[/green] from {escape(str(generate))}")

        for var, values in _group_assignments(add or [], "--add").items():
            env_set = store.add(var, values)
            console.print(f"Added [bold]{escape(var)}[/bold]: {len(env_set)} environment(s)")

        for var, values in _group_assignments(append or [], "--append").items():
            env_set = store.append(var, values)
            console.print(f"Appended to [bold]{escape(var)}[/bold]: {len(env_set)} environment(s)")

        for var, values in _group_assignments(remove or [], "--remove", value_required=False).items():
            if values:
                for value in values:
                    env_set = store.remove(var, value)
            else:
                env_set = store.remove(var)
            console.print(f"Removed [bold]{escape(var)}[/bold]: {len(env_set)} environment(s)")

    except ExomatError as e:
        _handle_error(e, "editing environments")


@app.command()
def run(
    experiment: Path = typer.Argument(
        ...,
        help="Path to the experiment source directory",
        exists=True,
        file_okay=False,
    ),
    repetitions: Optional[int] = typer.Option(
        None,
        "--repetitions", "-r",
        help="Runs per environment (default from exomat.yaml, else 1)",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Series directory to create (default: <experiment>-<timestamp>)",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Seed for the execution order shuffle",
    ),
    no_shuffle: bool = typer.Option(
        False,
        "--no-shuffle",
        help="Execute runs in environment order",
    ),
    trial: bool = typer.Option(
        False,
        "--trial",
        help="Run one environment once in a temporary directory and print a report",
    ),
) -> None:
    """Run an experiment series.

    Every environment is run REPETITIONS times, each run in its own
    directory. The first failing run stops the series.

    Example:
        exomat run matmul -r 5 --seed 42
    """
    try:
        settings = load_settings(experiment).with_overrides(
            repetitions=repetitions,
            seed=seed,
            shuffle=False if no_shuffle else None,
        )

        if trial:
            report = run_trial(experiment, settings.output_marker)
            console.print(report.render(), markup=False, highlight=False)
            if not report.succeeded:
                raise typer.Exit(1)
            return

        config = ExperimentConfig(
            source_dir=experiment,
            repetitions=settings.repetitions,
            output_dir=output,
            seed=settings.seed,
            shuffle=settings.shuffle,
        )
        total = len(EnvFileStore(experiment / SRC_ENV_DIR).env_files()) * config.repetitions

        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task_id = progress.add_task("Running", total=total)
            runner = ExperimentRunner(
                config,
                on_run_finished=lambda outcome: progress.advance(task_id),
                console=state["verbose"],
                min_level=LogLevel.DEBUG if state["verbose"] else LogLevel.INFO,
            )
            result = runner.run_all()

    except ExomatError as e:
        _handle_error(e, "running experiment")

    console.print(f"[green]Series complete:[/green] {result.successful_runs}/{len(result.planned)} runs")
    console.print(f"  Series: [bold]{escape(str(result.series_dir))}[/bold]")
    console.print()
    console.print(f"[dim]Collect outputs: cd {escape(str(result.series_dir))} && exomat make-table[/dim]")


@app.command("make-table")
def make_table(
    series: Optional[Path] = typer.Argument(
        None,
        help="Series directory (default: the series containing the current directory)",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="CSV file to write (default: <series>/<series>.csv)",
    ),
    show: bool = typer.Option(
        False,
        "--show",
        help="Also print the table",
    ),
) -> None:
    """Collect the out_* files of all runs of a series into a CSV table.

    Example:
        exomat make-table matmul-2024-05-01-12-00-00 --show
    """
    try:
        series_dir = find_marker(series or Path.cwd(), MARKER_SERIES)
        settings = load_settings(series_dir / SERIES_SRC_DIR)

        # A finished series is read-only; diagnostics go to the ops logger only
        table = collect_table(series_dir, settings.output_marker)

        csv_path = output or series_dir / f"{series_dir.name}.csv"
        write_csv(table, csv_path)
    except ExomatError as e:
        _handle_error(e, "creating table")

    console.print(f"[green]Wrote {len(table.rows)} row(s)[/green] to {escape(str(csv_path))}")

    if show:
        rich_table = Table(title=series_dir.name)
        for column in table.columns:
            rich_table.add_column(column)
        for row in table.rows:
            rich_table.add_row(*table.cells(row))
        console.print(rich_table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

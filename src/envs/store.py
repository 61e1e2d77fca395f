"""
Environment file store.

Persists an environment set as a directory of numbered NAME=value files
(0.env, 1.env, ...) and edits it. Every edit is validated against the
current files first and then fully regenerates the directory, so file
numbering stays contiguous and a failed edit changes nothing.
"""

from pathlib import Path
from typing import Iterable, Optional

from envs.algebra import (
    Environment,
    EnvSet,
    cross,
    from_list,
    validate_variable_name,
)
from errors import (
    DuplicateVariable,
    EnvAlgebraError,
    EnvStoreError,
    StoreIOFailure,
    UnknownValue,
    UnknownVariable,
)
from utils.fs_names import ENV_FILE_SUFFIX
from utils.ops_logger import get_ops_logger

logger = get_ops_logger("envs")


def env_file_name(index: int, count: int) -> str:
    """
    Name of file `index` out of `count`.

    Indices are zero-padded to the width of `count - 1` so lexical and
    numeric order agree.
    """
    width = max(len(str(count - 1)), 1)
    return f"{index:0{width}d}{ENV_FILE_SUFFIX}"


def read_env_file(path: Path) -> Environment:
    """
    Parse one environment file.

    Raises:
        StoreIOFailure: If the file cannot be read or is malformed
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise StoreIOFailure(f"Cannot read env file {path}: {e}") from e

    try:
        return Environment.from_text(text)
    except (ValueError, EnvAlgebraError) as e:
        raise StoreIOFailure(f"Malformed env file {path}: {e}") from e


class EnvFileStore:
    """A directory of .env files forming one environment set."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def env_files(self) -> list[Path]:
        """All regular *.env files, sorted by file name."""
        if not self.directory.is_dir():
            return []
        try:
            files = [
                entry for entry in self.directory.iterdir()
                if entry.is_file() and entry.name.endswith(ENV_FILE_SUFFIX)
            ]
        except OSError as e:
            raise StoreIOFailure(f"Cannot list env files in {self.directory}: {e}") from e
        return sorted(files, key=lambda p: p.name)

    def read_named(self) -> list[tuple[str, Environment]]:
        """(file stem, environment) pairs in file name order, without consistency checks."""
        return [(path.name[: -len(ENV_FILE_SUFFIX)], read_env_file(path)) for path in self.env_files()]

    def read(self) -> EnvSet:
        """
        All environments as one set.

        Raises:
            VariableSetMismatch: If the files do not declare the same variables
        """
        return EnvSet.of(env for _, env in self.read_named())

    def write(self, env_set: EnvSet) -> list[Path]:
        """
        Replace all env files with `env_set`.

        Returns:
            Paths of the written files, in order
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            for stale in self.env_files():
                stale.unlink()

            written = []
            count = len(env_set)
            for index, env in enumerate(env_set):
                path = self.directory / env_file_name(index, count)
                path.write_text(env.to_text(), encoding="utf-8")
                written.append(path)
        except OSError as e:
            raise StoreIOFailure(f"Cannot write env files to {self.directory}: {e}") from e

        logger.info("Rewrote env files", extra={"directory": str(self.directory), "count": len(written)})
        return written

    def generate(self, env_set: EnvSet) -> list[Path]:
        """Replace the store with an evaluated environment set."""
        for name in sorted(env_set.variable_names):
            validate_variable_name(name)
        return self.write(env_set)

    def add(self, var: str, values: Iterable) -> EnvSet:
        """
        Add a new variable, crossing every existing environment with its values.

        Raises:
            InvalidVariableName: If `var` is malformed or reserved
            DuplicateVariable: If any environment already sets `var`
        """
        validate_variable_name(var)
        values = [str(v) for v in values]
        if not values:
            raise EnvStoreError(f"No values given for new variable {var}")

        existing = self.read()
        if any(var in env for env in existing):
            raise DuplicateVariable(f"Variable '{var}' is already set")

        # An empty store behaves like one environment without variables
        base = existing if existing else EnvSet((Environment(),))
        result = cross(base, from_list(var, values))

        self.write(result)
        return result

    def append(self, var: str, values: Iterable) -> EnvSet:
        """
        Add values to an existing variable.

        Existing environments stay untouched. For every new value, one
        environment per distinct combination of the other variables is
        appended. Values that are already present are skipped.

        Raises:
            UnknownVariable: If no environment sets `var`
        """
        existing = self.read()
        if not any(var in env for env in existing):
            raise UnknownVariable(f"Variable '{var}' cannot be edited: it is not set")

        present = {env.get(var) for env in existing}
        new_values = []
        for value in (str(v) for v in values):
            if value in present or value in new_values:
                logger.warning("Skipping value that is already set", extra={"variable": var, "value": value})
                continue
            new_values.append(value)

        if not new_values:
            return existing

        position = existing[0].names.index(var)
        combinations: list[Environment] = []
        for env in existing:
            rest = env.without(var)
            if rest not in combinations:
                combinations.append(rest)

        appended = [
            rest.with_value(var, value, position=position)
            for value in new_values
            for rest in combinations
        ]
        result = EnvSet(existing.environments + tuple(appended))

        self.write(result)
        return result

    def remove(self, var: str, value: Optional[str] = None) -> EnvSet:
        """
        Remove a variable from every environment, or only the environments
        where it has `value`.

        Removing a whole variable keeps duplicate environments that may result.

        Raises:
            UnknownVariable: If no environment sets `var`
            UnknownValue: If `value` is given and no environment has it
        """
        existing = self.read()
        if not any(var in env for env in existing):
            raise UnknownVariable(f"Variable '{var}' cannot be edited: it is not set")

        if value is None:
            result = EnvSet.of(env.without(var) for env in existing)
        else:
            value = str(value)
            if not any(env.get(var) == value for env in existing):
                raise UnknownValue(f"Value '{value}' of '{var}' cannot be removed: it is not set")
            result = EnvSet.of(env for env in existing if env.get(var) != value)
            if not result:
                logger.warning("Removed the last environment", extra={"variable": var, "value": value})

        self.write(result)
        return result

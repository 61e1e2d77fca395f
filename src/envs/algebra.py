"""
Environment-configuration algebra.

An environment is one complete assignment of values to variables (the
content of one .env file). An environment set is an ordered collection of
environments sharing the same variable names. Sets are built from lists or
command output and combined by union and cross product:

    freqs = from_list("FREQ", [1000, 2000, 3000])
    cpus = from_list("CPUS", ["0,1", "0,1,2,3"])
    envs = cross(freqs, cpus) + cross(from_list("FREQ", [4000]), cpus)

Set expressions can also be built as plain data (FromList, FromOutput,
FromCommand, Union, Cross) and evaluated later with evaluate().
"""

import itertools
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union as TypingUnion

from errors import (
    CommandOutputFailure,
    EmptyEnvironmentSet,
    EnvAlgebraError,
    InvalidVariableName,
    VariableNameCollision,
    VariableSetMismatch,
)
from utils.fs_names import RESERVED_VARS

VARIABLE_NAME_PATTERN = re.compile(r"^[A-Z_][0-9A-Z_]*$")


def validate_variable_name(name: str) -> str:
    """
    Check that a user-declared variable name is usable.

    Only upper case alphanumerics and underscores are allowed, the first
    character must not be a digit, and names exomat sets itself are rejected.

    Raises:
        InvalidVariableName: If the name is malformed or reserved
    """
    if not isinstance(name, str) or not VARIABLE_NAME_PATTERN.match(name):
        raise InvalidVariableName(
            f"Invalid variable name '{name}': only upper case alphanumerics and _ "
            "are allowed, and it must not start with a digit"
        )
    if name in RESERVED_VARS:
        raise InvalidVariableName(
            f"Variable name '{name}' is reserved ({', '.join(RESERVED_VARS)})"
        )
    return name


@dataclass(frozen=True)
class Environment:
    """One configuration: ordered NAME=value assignments with unique names."""

    assignments: tuple[tuple[str, str], ...] = ()

    def __post_init__(self):
        seen = set()
        for name, value in self.assignments:
            if not name or "=" in name or any(c.isspace() for c in name):
                raise EnvAlgebraError(f"Invalid variable name '{name}'")
            if not isinstance(value, str) or "\n" in value or "\r" in value:
                raise EnvAlgebraError(f"Value of '{name}' must be a single-line string")
            if name in seen:
                raise EnvAlgebraError(f"Variable '{name}' assigned twice in one environment")
            seen.add(name)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> "Environment":
        return cls(tuple((name, value) for name, value in pairs))

    @property
    def names(self) -> tuple[str, ...]:
        """Variable names in assignment order."""
        return tuple(name for name, _ in self.assignments)

    @property
    def variable_names(self) -> frozenset[str]:
        return frozenset(self.names)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for var, value in self.assignments:
            if var == name:
                return value
        return default

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def __len__(self) -> int:
        return len(self.assignments)

    def to_dict(self) -> dict[str, str]:
        return dict(self.assignments)

    def with_value(self, name: str, value: str, position: Optional[int] = None) -> "Environment":
        """
        Set a variable, replacing an existing assignment in place.

        New variables are appended, or inserted at `position` if given.
        """
        if name in self:
            return Environment(tuple(
                (var, value if var == name else old) for var, old in self.assignments
            ))
        assignments = list(self.assignments)
        if position is None:
            assignments.append((name, value))
        else:
            assignments.insert(position, (name, value))
        return Environment(tuple(assignments))

    def without(self, name: str) -> "Environment":
        return Environment(tuple(
            (var, value) for var, value in self.assignments if var != name
        ))

    def to_text(self) -> str:
        """Serialize as one NAME=value line per assignment."""
        return "".join(f"{name}={value}\n" for name, value in self.assignments)

    @classmethod
    def from_text(cls, text: str) -> "Environment":
        """
        Parse NAME=value lines.

        The value is the literal text after the first '='. Blank lines and
        lines starting with '#' are skipped.

        Raises:
            ValueError: On a line without '=' or a repeated variable
        """
        pairs = []
        seen = set()
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            if "=" not in line:
                raise ValueError(f"line {lineno}: expected NAME=value, got '{line}'")
            name, value = line.split("=", 1)
            name = name.strip()
            if not name:
                raise ValueError(f"line {lineno}: missing variable name")
            if name in seen:
                raise ValueError(f"line {lineno}: variable '{name}' assigned twice")
            seen.add(name)
            pairs.append((name, value))
        return cls(tuple(pairs))


@dataclass(frozen=True)
class EnvSet:
    """
    Ordered environments that all share the same variable names.

    Order only matters for deterministic file numbering.
    """

    environments: tuple[Environment, ...] = ()

    def __post_init__(self):
        if not self.environments:
            return
        expected = self.environments[0].variable_names
        for index, env in enumerate(self.environments[1:], start=1):
            if env.variable_names != expected:
                raise VariableSetMismatch(
                    f"Environment {index} has variables {sorted(env.variable_names)}, "
                    f"expected {sorted(expected)}"
                )

    @classmethod
    def of(cls, environments: Iterable[Environment]) -> "EnvSet":
        return cls(tuple(environments))

    @property
    def variable_names(self) -> frozenset[str]:
        if not self.environments:
            return frozenset()
        return self.environments[0].variable_names

    def __len__(self) -> int:
        return len(self.environments)

    def __iter__(self) -> Iterator[Environment]:
        return iter(self.environments)

    def __getitem__(self, index: int) -> Environment:
        return self.environments[index]

    def __bool__(self) -> bool:
        return bool(self.environments)

    def __add__(self, other: "EnvSet") -> "EnvSet":
        return union(self, other)

    def __mul__(self, other: "EnvSet") -> "EnvSet":
        return cross(self, other)


def from_list(name: str, values: Iterable) -> EnvSet:
    """One environment per value, in the given order."""
    return EnvSet(tuple(Environment(((name, str(value)),)) for value in values))


def from_output(name: str, text: str) -> EnvSet:
    """One environment per non-empty line of `text`."""
    return from_list(name, [line for line in text.splitlines() if line])


def from_command(name: str, command: str, cwd: Optional[Path] = None) -> EnvSet:
    """
    Run a shell command and use each non-empty stdout line as a value.

    Raises:
        CommandOutputFailure: If the command cannot be spawned or exits nonzero
    """
    try:
        result = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            cwd=str(cwd) if cwd else None,
        )
    except OSError as e:
        raise CommandOutputFailure(f"Cannot run '{command}' for {name}: {e}") from e

    if result.returncode != 0:
        raise CommandOutputFailure(
            f"Command '{command}' for {name} exited with {result.returncode}: "
            f"{result.stderr.strip()}"
        )
    return from_output(name, result.stdout)


def _require_non_empty(sets: tuple[EnvSet, ...], operation: str) -> None:
    if not sets:
        raise EmptyEnvironmentSet(f"{operation} needs at least one environment set")
    for index, env_set in enumerate(sets):
        if not env_set:
            raise EmptyEnvironmentSet(f"{operation} operand {index} is empty")


def union(*sets: EnvSet) -> EnvSet:
    """
    Concatenate environment sets with identical variable names, left to right.

    Raises:
        EmptyEnvironmentSet: If any operand is empty
        VariableSetMismatch: If the operands declare different variables
    """
    _require_non_empty(sets, "Union")

    expected = sets[0].variable_names
    for env_set in sets[1:]:
        if env_set.variable_names != expected:
            raise VariableSetMismatch(
                f"Cannot unite sets over {sorted(expected)} and {sorted(env_set.variable_names)}"
            )

    return EnvSet(tuple(env for env_set in sets for env in env_set))


def cross(*sets: EnvSet) -> EnvSet:
    """
    Cartesian product of environment sets with disjoint variable names.

    Enumeration holds the first operand fixed longest and varies the last
    operand fastest, so identical inputs always number their files the same.

    Raises:
        EmptyEnvironmentSet: If any operand is empty
        VariableNameCollision: If two operands share a variable
    """
    _require_non_empty(sets, "Cross product")

    seen: dict[str, int] = {}
    for index, env_set in enumerate(sets):
        for name in env_set.variable_names:
            if name in seen:
                raise VariableNameCollision(
                    f"Variable '{name}' appears in cross product operands {seen[name]} and {index}"
                )
            seen[name] = index

    combined = []
    for combination in itertools.product(*(env_set.environments for env_set in sets)):
        assignments = tuple(pair for env in combination for pair in env.assignments)
        combined.append(Environment(assignments))
    return EnvSet(tuple(combined))


# Set expressions


@dataclass(frozen=True)
class FromList:
    name: str
    values: tuple[str, ...]


@dataclass(frozen=True)
class FromOutput:
    name: str
    text: str


@dataclass(frozen=True)
class FromCommand:
    name: str
    command: str
    cwd: Optional[Path] = None


@dataclass(frozen=True)
class Union:
    operands: tuple["SetExpr", ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Cross:
    operands: tuple["SetExpr", ...] = field(default_factory=tuple)


SetExpr = TypingUnion[FromList, FromOutput, FromCommand, Union, Cross]


def evaluate(expr: SetExpr) -> EnvSet:
    """Evaluate a set expression to a concrete environment set."""
    if isinstance(expr, FromList):
        return from_list(expr.name, expr.values)
    if isinstance(expr, FromOutput):
        return from_output(expr.name, expr.text)
    if isinstance(expr, FromCommand):
        return from_command(expr.name, expr.command, expr.cwd)
    if isinstance(expr, Union):
        return union(*(evaluate(operand) for operand in expr.operands))
    if isinstance(expr, Cross):
        return cross(*(evaluate(operand) for operand in expr.operands))
    raise TypeError(f"Not a set expression: {type(expr).__name__}")

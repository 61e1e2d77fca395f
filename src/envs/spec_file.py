"""
Environment algebra files.

Describes an environment set as YAML instead of editing env files one
variable at a time:

    sets:
      freqs: {from_list: {name: FREQ, values: [1000, 2000]}}
      kernels: {from_command: {name: KERNEL, command: "ls kernels"}}
    result:
      union:
        - cross: [freqs, kernels, {from_list: {name: TURBO, values: ["OFF"]}}]
        - cross: [{from_list: {name: FREQ, values: [3000]}}, kernels,
                  {from_list: {name: TURBO, values: ["ON"]}}]

A node is either the name of an entry defined earlier under `sets` or a
mapping with exactly one of from_list, from_output, from_command, union or
cross.
"""

from pathlib import Path
from typing import Any, Optional

import yaml

from envs.algebra import (
    Cross,
    EnvSet,
    FromCommand,
    FromList,
    FromOutput,
    SetExpr,
    Union,
    evaluate,
    validate_variable_name,
)
from errors import EnvSpecError, InvalidVariableName

NODE_KINDS = ("from_list", "from_output", "from_command", "union", "cross")


def _require_fields(kind: str, body: Any, fields: tuple[str, ...], where: str) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise EnvSpecError(f"{where}: {kind} expects a mapping with {', '.join(fields)}")
    missing = [f for f in fields if f not in body]
    if missing:
        raise EnvSpecError(f"{where}: {kind} missing field(s) {', '.join(missing)}")
    return body


def _parse_name(body: dict[str, Any], where: str) -> str:
    try:
        return validate_variable_name(str(body["name"]))
    except InvalidVariableName as e:
        raise InvalidVariableName(f"{where}: {e}") from e


def parse_node(
    node: Any,
    named: dict[str, SetExpr],
    base_dir: Optional[Path] = None,
    where: str = "result",
) -> SetExpr:
    """
    Turn one YAML node into a set expression.

    Args:
        node: Parsed YAML value
        named: Expressions defined so far under `sets`
        base_dir: Working directory for from_command nodes
        where: Location used in error messages

    Raises:
        EnvSpecError: If the node is malformed or references an unknown set
    """
    if isinstance(node, str):
        if node not in named:
            raise EnvSpecError(
                f"{where}: unknown set '{node}'. Defined sets: {', '.join(named) or 'none'}"
            )
        return named[node]

    if not isinstance(node, dict) or len(node) != 1:
        raise EnvSpecError(
            f"{where}: expected a set name or a mapping with one of {', '.join(NODE_KINDS)}"
        )

    kind, body = next(iter(node.items()))

    if kind == "from_list":
        body = _require_fields(kind, body, ("name", "values"), where)
        values = body["values"]
        if not isinstance(values, list):
            raise EnvSpecError(f"{where}: from_list values must be a list")
        return FromList(_parse_name(body, where), tuple(str(v) for v in values))

    if kind == "from_output":
        body = _require_fields(kind, body, ("name", "text"), where)
        return FromOutput(_parse_name(body, where), str(body["text"]))

    if kind == "from_command":
        body = _require_fields(kind, body, ("name", "command"), where)
        return FromCommand(_parse_name(body, where), str(body["command"]), base_dir)

    if kind in ("union", "cross"):
        if not isinstance(body, list) or not body:
            raise EnvSpecError(f"{where}: {kind} expects a non-empty list of sets")
        operands = tuple(
            parse_node(item, named, base_dir, f"{where}.{kind}[{i}]")
            for i, item in enumerate(body)
        )
        return Union(operands) if kind == "union" else Cross(operands)

    raise EnvSpecError(f"{where}: unknown node '{kind}', expected one of {', '.join(NODE_KINDS)}")


def parse_env_spec(data: Any, base_dir: Optional[Path] = None) -> SetExpr:
    """Parse a loaded YAML document into the expression under `result`."""
    if not isinstance(data, dict):
        raise EnvSpecError("Env spec must be a mapping with a 'result' entry")

    unknown = set(data) - {"sets", "result"}
    if unknown:
        raise EnvSpecError(f"Unknown top-level keys: {', '.join(sorted(unknown))}")

    if "result" not in data:
        raise EnvSpecError("Env spec missing required 'result' entry")

    sets = data.get("sets") or {}
    if not isinstance(sets, dict):
        raise EnvSpecError("'sets' must be a mapping of names to sets")

    named: dict[str, SetExpr] = {}
    for name, node in sets.items():
        named[str(name)] = parse_node(node, named, base_dir, where=f"sets.{name}")

    return parse_node(data["result"], named, base_dir)


def load_env_spec(path: Path) -> SetExpr:
    """
    Load an env spec YAML file.

    from_command nodes run in the directory containing the file.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise EnvSpecError(f"Cannot read env spec {path}: {e}") from e

    return parse_env_spec(data, base_dir=path.resolve().parent)


def evaluate_env_spec(path: Path) -> EnvSet:
    """Load and evaluate an env spec file."""
    return evaluate(load_env_spec(path))

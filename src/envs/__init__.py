"""
Environment configuration module.

Build environment sets with the set algebra and persist them as env files.
"""

from envs.algebra import (
    Cross,
    Environment,
    EnvSet,
    FromCommand,
    FromList,
    FromOutput,
    Union,
    cross,
    evaluate,
    from_command,
    from_list,
    from_output,
    union,
    validate_variable_name,
)
from envs.spec_file import evaluate_env_spec, load_env_spec
from envs.store import EnvFileStore, env_file_name, read_env_file

__all__ = [
    # Algebra
    "Environment",
    "EnvSet",
    "from_list",
    "from_output",
    "from_command",
    "union",
    "cross",
    "validate_variable_name",
    # Set expressions
    "FromList",
    "FromOutput",
    "FromCommand",
    "Union",
    "Cross",
    "evaluate",
    # Algebra files
    "load_env_spec",
    "evaluate_env_spec",
    # Store
    "EnvFileStore",
    "env_file_name",
    "read_env_file",
]

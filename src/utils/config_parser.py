from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from errors import SettingsError
from utils.fs_names import OUTPUT_MARKER, SRC_SETTINGS_FILE


class ExperimentSettings(BaseModel):
    """Per-experiment defaults read from exomat.yaml in the source directory."""

    repetitions: int = 1
    output_marker: str = OUTPUT_MARKER
    shuffle: bool = True
    seed: Optional[int] = None

    @field_validator("repetitions")
    @classmethod
    def validate_repetitions(cls, v: int) -> int:
        """Validate that at least one repetition is requested."""
        if v < 1:
            raise ValueError(f"repetitions must be at least 1, got {v}")
        return v

    @field_validator("output_marker")
    @classmethod
    def validate_output_marker(cls, v: str) -> str:
        """Validate that the marker can be used as a file name prefix."""
        if not v or "/" in v:
            raise ValueError(f"output_marker must be a non-empty file name prefix, got '{v}'")
        return v

    def with_overrides(self, **overrides: Any) -> "ExperimentSettings":
        """Return a copy with every non-None override applied."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        return parse_settings({**self.model_dump(), **updates})


def parse_settings(data: dict[str, Any] | None) -> ExperimentSettings:
    """
    Validate a settings mapping.

    Raises:
        SettingsError: If the mapping has unknown keys or invalid values
    """
    if not data:
        return ExperimentSettings()

    if not isinstance(data, dict):
        raise SettingsError(f"Settings must be a mapping, got {type(data).__name__}")

    unknown = set(data) - set(ExperimentSettings.model_fields)
    if unknown:
        raise SettingsError(
            f"Unknown settings: {', '.join(sorted(unknown))}. "
            f"Known settings: {', '.join(ExperimentSettings.model_fields)}"
        )

    try:
        return ExperimentSettings(**data)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings: {e}") from e


def load_settings(source_dir: Path) -> ExperimentSettings:
    """
    Load settings of an experiment source directory.

    A missing settings file yields the defaults.
    """
    settings_path = Path(source_dir) / SRC_SETTINGS_FILE
    if not settings_path.is_file():
        return ExperimentSettings()

    try:
        with open(settings_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(f"Cannot read {settings_path}: {e}") from e

    return parse_settings(data)

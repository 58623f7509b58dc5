# src/orsynth/dataloader/config_loader.py
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from orsynth.errors import ConfigError
from orsynth.schemas.models import GenerationConfig


class ConfigLoader:
    """
    @brief
    Loader responsible for reading and validating the generation config.

    @details
    Reads YAML from disk, parses it into a mapping, validates structure
    against the Pydantic `GenerationConfig` schema, and raises structured
    `ConfigError` instances for all failure modes.
    """

    def load(self, path: Path) -> GenerationConfig:
        """
        @brief
        Load and validate configuration from YAML file.

        @params
            path : Path
                Filesystem path to configuration file (.yaml or .yml).

        @returns
            Validated GenerationConfig instance with defaults applied.

        @raises
            ConfigError
                Raised if file is missing, malformed, or fails schema validation.
        """
        # (1) Read and parse YAML configuration file
        data = read_yaml_mapping(path, source="ConfigLoader._read_yaml")

        # (2) Validate mapping against Pydantic schema
        return self._validate(data)

    def _validate(self, data: dict[str, Any]) -> GenerationConfig:
        try:
            return GenerationConfig(**data)
        except ValidationError as e:
            raise ConfigError(
                message=f"Invalid configuration structure: {e}",
                source="ConfigLoader._validate",
                suggested_action=(
                    "Check field names, types, and bounds in config.yaml. "
                    "Remove unknown keys (extra fields are forbidden)."
                ),
            ) from e


def read_yaml_mapping(path: Path, source: str) -> dict[str, Any]:
    """
    @brief
    Read YAML file into Python mapping with strict checks.

    @details
    Validates file existence, extension, readability, and syntax.
    Ensures non-empty content and top-level mapping structure before returning
    a normalized dictionary. Shared by ConfigLoader and ReferenceLoader.

    @params
        path : Path
            Path to the YAML file.
        source : str
            Component name recorded on raised errors.

    @returns
        Parsed dictionary.

    @raises
        ConfigError
            Raised on invalid path type, missing file, wrong extension,
            I/O error, syntax error, empty file, or non-mapping structure.
    """
    # (1) Validate path type and existence
    if not isinstance(path, Path):
        raise ConfigError(
            message=f"Invalid path type: expected pathlib.Path, got {type(path).__name__}",
            source=source,
            suggested_action="Pass a pathlib.Path object pointing to the YAML file.",
        )

    if not path.exists():
        raise ConfigError(
            message=f"File not found: {path}",
            source=source,
            suggested_action="Ensure the YAML file exists and the path is correct.",
        )

    # (2) Enforce correct file extension
    if path.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError(
            message=f"Invalid file extension: {path.suffix}",
            source=source,
            suggested_action="Use .yaml or .yml extension.",
        )

    # (3) Read and parse YAML content
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(
            message=f"YAML parsing failed: {e}",
            source=source,
            suggested_action="Fix YAML syntax/indentation.",
        ) from e
    except OSError as e:
        raise ConfigError(
            message=f"Unable to read file: {e}",
            source=source,
            suggested_action="Check file permissions and path accessibility.",
        ) from e

    # (4) Validate structural integrity of parsed data
    if data is None:
        raise ConfigError(
            message=f"File is empty: {path.name}",
            source=source,
            suggested_action="Populate the file with required parameters.",
        )

    if not isinstance(data, Mapping):
        raise ConfigError(
            message="YAML root must be a mapping (key: value pairs).",
            source=source,
            suggested_action="Ensure top-level YAML structure uses key: value mappings.",
        )

    return dict(data)


__all__ = ["ConfigLoader", "read_yaml_mapping"]

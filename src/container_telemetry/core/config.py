"""Configuration loading utilities.

Supports YAML and JSON configuration files with schema validation.
"""

from __future__ import annotations

import json
from pathlib import Path

import yaml

from container_telemetry.core.schemas import TelemetryConfig


def load_config(path: Path | str | None = None) -> TelemetryConfig:
    """Load and validate a telemetry configuration file.

    Args:
        path: Path to YAML or JSON configuration file. None returns defaults.

    Returns:
        Validated TelemetryConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported
        pydantic.ValidationError: If config is invalid
    """
    if path is None:
        return TelemetryConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    with open(path, encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    # An empty YAML file loads as None
    return TelemetryConfig.model_validate(data or {})

"""Configuration loading utilities.

Supports YAML and JSON configuration files with schema validation.
"""

from __future__ import annotations

import base64
import binascii
import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cmon_agent.core.errors import ConfigurationError
from cmon_agent.core.schemas import AgentConfig, CmonOptions


def load_config(path: Path | str) -> AgentConfig:
    """Load and validate an agent configuration file.

    Args:
        path: Path to YAML or JSON configuration file

    Returns:
        Validated AgentConfig object

    Raises:
        ConfigurationError: If the file is missing, unreadable, of an
            unsupported format, or fails validation
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    try:
        with open(path, encoding="utf-8") as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ConfigurationError(
                    f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json"
                )
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to read configuration {path}: {e}") from e

    return validate_config(data)


def validate_config(data: Any) -> AgentConfig:
    """Validate already-parsed configuration data.

    Raises:
        ConfigurationError: If the data does not describe a valid AgentConfig
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a mapping")
    try:
        return AgentConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def decode_cmon_options(header: str | None) -> CmonOptions:
    """Decode the base64 JSON options header sent with metrics requests.

    A missing or empty header yields default options.

    Raises:
        ValueError: If the header is not base64-encoded JSON of the expected shape
    """
    if not header:
        return CmonOptions()
    try:
        raw = base64.b64decode(header, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"malformed options header: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("malformed options header: expected a JSON object")
    try:
        return CmonOptions.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"malformed options header: {e}") from e

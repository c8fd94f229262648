"""Configuration loading utilities."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from fleetcore.config.schema import Config
from fleetcore.errors import ConfigurationError

DEFAULT_CONFIG_NAME = "fleetcore.json"


def get_config_path(path: str | Path | None = None) -> Path:
    """Resolve the config file path, defaulting to ./fleetcore.json."""
    if path:
        return Path(path).expanduser()
    return Path.cwd() / DEFAULT_CONFIG_NAME


def camel_to_snake(name: str) -> str:
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case recursively."""
    if isinstance(data, dict):
        return {camel_to_snake(str(k)): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase recursively."""
    if isinstance(data, dict):
        return {snake_to_camel(str(k)): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def load_config(path: str | Path | None = None) -> Config:
    """
    Load configuration from a JSON file.

    Only the ``api`` section is key-converted; robot entries are passed
    through untouched because their extra fields are user-named.
    Missing file yields defaults.
    """
    config_path = get_config_path(path)
    if not config_path.exists():
        logger.debug(f"No config at {config_path}, using defaults")
        return Config()
    try:
        with config_path.open() as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must be a JSON object")
    api = data.get("api")
    if isinstance(api, dict):
        data = {**data, "api": convert_keys(api)}
    return Config.model_validate(data)


def save_config(config: Config, path: str | Path | None = None) -> Path:
    """Write configuration as camelCase JSON."""
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(by_alias=False)
    data["api"] = convert_to_camel(data["api"])
    with config_path.open("w") as f:
        json.dump(data, f, indent=2)
    return config_path

"""
histdb Config - Configuration file loading.

Priority:
1. Environment variables (HISTDB_*)
2. Config file (~/.config/histdb/config.yaml, or $HISTDB_CONFIG)
3. Defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from histdb.config.models import HistdbConfig, default_config_path
from histdb.core.exceptions import ConfigError

ENV_MAPPINGS = {
    "HISTDB_IGNORE_SPACE": "ignore_space",
    "HISTDB_LOG_LEVEL": "log_level",
    "HISTDB_HOSTNAME": "hostname",
    "HISTDB_DATA_DIR": "data_dir",
    "HISTDB_RUNTIME_DIR": "runtime_dir",
}


def config_path() -> Path:
    override = os.environ.get("HISTDB_CONFIG")
    return Path(override).expanduser() if override else default_config_path()


def load_config(path: Path | None = None) -> HistdbConfig:
    """
    Load configuration.

    Args:
        path: Config file to read instead of the default location.

    Raises:
        ConfigError: the file exists but cannot be parsed or validated.
    """
    path = path or config_path()
    data: dict[str, Any] = {}

    if path.is_file():
        try:
            with open(path) as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}", {"path": str(path)}) from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping", {"path": str(path)})
        data.update(loaded or {})
    else:
        logger.debug(f"No config file at {path}, using defaults")

    for env_var, key in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[key] = value

    try:
        return HistdbConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}", {"path": str(path)}) from e

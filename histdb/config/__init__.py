"""
histdb Config - Configuration management.
"""

from histdb.config.loader import config_path, load_config
from histdb.config.models import (
    SOCKET_NAME,
    HistdbConfig,
    default_config_path,
    default_data_dir,
    default_runtime_dir,
)

__all__ = [
    "SOCKET_NAME",
    "HistdbConfig",
    "config_path",
    "default_config_path",
    "default_data_dir",
    "default_runtime_dir",
    "load_config",
]

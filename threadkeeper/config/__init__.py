"""Configuration models and loading."""

from threadkeeper.config.loader import get_config_path, load_config, save_config
from threadkeeper.config.schema import (
    AutosaveConfig,
    CompactionSettings,
    Config,
    GenerationConfig,
)

__all__ = [
    "AutosaveConfig",
    "CompactionSettings",
    "Config",
    "GenerationConfig",
    "get_config_path",
    "load_config",
    "save_config",
]

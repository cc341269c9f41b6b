"""Configuration system for dionysius.

This module provides TOML-based configuration loading, validation,
schema definitions and the per-directory resolver.
"""

from .loader import (
    ConfigError,
    ConfigResolutionError,
    find_config_file,
    load_config,
    load_local_config,
)
from .resolver import ConfigTree, EffectiveConfig, resolve
from .schema import (
    Backend,
    Config,
    ConfigNode,
    DirectoryEntry,
    GlobalConfig,
    OnUnsave,
)

__all__ = [
    "Backend",
    "Config",
    "ConfigNode",
    "DirectoryEntry",
    "GlobalConfig",
    "OnUnsave",
    "ConfigTree",
    "EffectiveConfig",
    "resolve",
    "load_config",
    "load_local_config",
    "find_config_file",
    "ConfigError",
    "ConfigResolutionError",
]

"""Configuration module for CargoKit.

This module provides YAML configuration parsing and validation for cargokit.yaml.
"""

from cargokit.config.parser import (
    CacheConfig,
    StoreConfig,
    apply_overrides,
    load_config,
    parse_config,
    parse_duration,
)

__all__ = [
    "CacheConfig",
    "StoreConfig",
    "apply_overrides",
    "load_config",
    "parse_config",
    "parse_duration",
]

"""YAML configuration parser for CargoKit.

This module provides parsing and validation for the ``cache:`` section of
cargokit.yaml, and merging of command-line overrides on top of it.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from cargokit.cargo.home import Category
from cargokit.caching.access import TrackingMode
from cargokit.caching.keys import CrossPlatformSharing
from cargokit.core.exceptions import ConfigError

CONFIG_FILE_NAME = "cargokit.yaml"

_DURATION_TOKEN = re.compile(r"(\d+)\s*([a-z]+)")
_DURATION_UNITS = {
    "w": 604800,
    "d": 86400,
    "h": 3600,
    "m": 60,
    "min": 60,
    "s": 1,
}

_MIN_RECACHE_KEYS = {
    Category.INDEX: "min-recache-indices",
    Category.CRATE_FILE: "min-recache-crates",
    Category.GIT_REPO: "min-recache-git-repos",
}


@dataclass
class StoreConfig:
    """Remote store configuration."""

    type: str = "local"  # 'local', 'http'
    path: Optional[str] = None  # local store directory
    url: Optional[str] = None  # http store base URL
    token: Optional[str] = None  # http bearer token
    timeout: float = 30.0


@dataclass
class CacheConfig:
    """Cargo home caching configuration."""

    cache_only: List[Category] = field(default_factory=lambda: list(Category))
    min_recache: Dict[Category, timedelta] = field(default_factory=dict)
    cross_platform_sharing: CrossPlatformSharing = CrossPlatformSharing.NONE
    tracking: TrackingMode = TrackingMode.AUTO
    platform: Optional[str] = None  # declared '<os>-<arch>', detected if None
    store: StoreConfig = field(default_factory=StoreConfig)

    def min_recache_interval(self, category: Category) -> timedelta:
        return self.min_recache.get(category, category.default_min_recache_interval())


def parse_duration(value: Any) -> timedelta:
    """
    Parse a duration such as ``1d``, ``36h``, ``2h 30m`` or ``90s``.

    Bare integers are seconds.

    Raises:
        ConfigError: If the value is not a valid duration

    Example:
        >>> parse_duration("2h 30m")
        datetime.timedelta(seconds=9000)
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ConfigError(f"Duration must not be negative: {value}")
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ConfigError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    if text.isdigit():
        return timedelta(seconds=int(text))

    total = 0
    position = 0
    for match in _DURATION_TOKEN.finditer(text):
        if text[position:match.start()].strip():
            raise ConfigError(f"Invalid duration: '{value}'")
        unit = match.group(2)
        if unit not in _DURATION_UNITS:
            raise ConfigError(f"Unknown duration unit '{unit}' in '{value}'")
        total += int(match.group(1)) * _DURATION_UNITS[unit]
        position = match.end()

    if position == 0 or text[position:].strip():
        raise ConfigError(f"Invalid duration: '{value}'")
    return timedelta(seconds=total)


def parse_cache_only(value: Any) -> List[Category]:
    """Parse ``cache-only`` from a list or a whitespace-separated string."""
    if isinstance(value, str):
        names = value.split()
    elif isinstance(value, list):
        names = [str(v) for v in value]
    else:
        raise ConfigError("cache-only must be a list or a whitespace-separated string")
    if not names:
        raise ConfigError("cache-only must name at least one category")
    return Category.parse_list(names)


def parse_config(config_path: Path) -> CacheConfig:
    """
    Parse cargokit.yaml configuration file.

    Args:
        config_path: Path to cargokit.yaml

    Returns:
        Parsed and validated configuration

    Raises:
        ConfigError: If configuration is invalid
    """
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if data is None:
        return CacheConfig()
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    return _parse_cache_section(data.get("cache") or {})


def load_config(
    config_path: Optional[Path] = None, project_root: Optional[Path] = None
) -> CacheConfig:
    """
    Load configuration from an explicit path or the project root.

    A missing cargokit.yaml in the project root yields the defaults; an
    explicitly given path must exist.
    """
    if config_path is not None:
        return parse_config(Path(config_path))

    candidate = Path(project_root or Path.cwd()) / CONFIG_FILE_NAME
    if candidate.exists():
        return parse_config(candidate)
    return CacheConfig()


def _parse_cache_section(data: dict) -> CacheConfig:
    """Parse and validate the cache section."""
    if not isinstance(data, dict):
        raise ConfigError("'cache' must be a mapping")

    config = CacheConfig()

    if "cache-only" in data:
        config.cache_only = parse_cache_only(data["cache-only"])

    for category, key in _MIN_RECACHE_KEYS.items():
        if key in data:
            config.min_recache[category] = parse_duration(data[key])

    if "cross-platform-sharing" in data:
        config.cross_platform_sharing = CrossPlatformSharing.from_name(
            str(data["cross-platform-sharing"])
        )

    if "tracking" in data:
        config.tracking = TrackingMode.from_name(str(data["tracking"]))

    if data.get("platform"):
        config.platform = str(data["platform"])

    config.store = _parse_store(data.get("store") or {})
    return config


def _parse_store(data: dict) -> StoreConfig:
    """Parse remote store configuration."""
    if not isinstance(data, dict):
        raise ConfigError("'store' must be a mapping")

    valid_types = ["local", "http"]
    store_type = data.get("type", "local")
    if store_type not in valid_types:
        raise ConfigError(
            f"Invalid store type: {store_type} (expected one of {valid_types})"
        )

    try:
        timeout = float(data.get("timeout", 30.0))
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid store timeout: {data.get('timeout')!r}")

    return StoreConfig(
        type=store_type,
        path=data.get("path"),
        url=data.get("url"),
        token=data.get("token"),
        timeout=timeout,
    )


def apply_overrides(config: CacheConfig, overrides: Dict[str, Any]) -> CacheConfig:
    """
    Return a copy of config with command-line values applied.

    Keys use the configuration file names (``cache-only``,
    ``min-recache-indices``, ``store-path``...). None values are ignored.
    """
    result = replace(
        config,
        min_recache=dict(config.min_recache),
        store=replace(config.store),
    )

    for key, value in overrides.items():
        if value is None:
            continue
        if key == "cache-only":
            result.cache_only = parse_cache_only(value)
        elif key == "cross-platform-sharing":
            result.cross_platform_sharing = CrossPlatformSharing.from_name(value)
        elif key == "tracking":
            result.tracking = TrackingMode.from_name(value)
        elif key == "platform":
            result.platform = value
        elif key == "store-path":
            result.store.type = "local"
            result.store.path = value
        elif key == "store-url":
            result.store.type = "http"
            result.store.url = value
        elif key == "store-token":
            result.store.token = value
        else:
            category = next(
                (c for c, name in _MIN_RECACHE_KEYS.items() if name == key), None
            )
            if category is None:
                raise ConfigError(f"Unknown configuration option: {key}")
            result.min_recache[category] = parse_duration(value)

    return result


__all__ = [
    "CONFIG_FILE_NAME",
    "StoreConfig",
    "CacheConfig",
    "parse_duration",
    "parse_cache_only",
    "parse_config",
    "load_config",
    "apply_overrides",
]

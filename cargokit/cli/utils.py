"""
Shared utilities for CLI commands.

Builds the configuration, store and cache objects every cache command
needs from parsed arguments, and formats user-facing output.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from cargokit.caching.keys import JobIdentity
from cargokit.caching.remote import create_store
from cargokit.caching.sync import CargoHomeCache
from cargokit.config.parser import CacheConfig, apply_overrides, load_config
from cargokit.core.directory import get_cargo_home, get_work_dir

logger = logging.getLogger(__name__)

_OVERRIDE_OPTIONS = {
    "cache_only": "cache-only",
    "min_recache_indices": "min-recache-indices",
    "min_recache_crates": "min-recache-crates",
    "min_recache_git_repos": "min-recache-git-repos",
    "cross_platform_sharing": "cross-platform-sharing",
    "tracking": "tracking",
    "platform": "platform",
    "store_path": "store-path",
    "store_url": "store-url",
    "store_token": "store-token",
}


# ============================================================================
# Configuration
# ============================================================================


def resolve_project_root(path: Optional[Path] = None) -> Path:
    """
    Resolve project root directory.

    Args:
        path: Optional path (defaults to current directory)

    Returns:
        Resolved absolute path
    """
    if path is None:
        path = Path.cwd()
    return path.resolve()


def load_cache_config(args) -> CacheConfig:
    """
    Load cargokit.yaml and apply command-line overrides.

    Raises:
        ConfigError: If the file or any override is invalid
    """
    project_root = resolve_project_root(getattr(args, "project_root", None))
    config = load_config(getattr(args, "config", None), project_root)
    overrides = {
        name: getattr(args, attr, None) for attr, name in _OVERRIDE_OPTIONS.items()
    }
    return apply_overrides(config, overrides)


def build_cargo_cache(args, config: Optional[CacheConfig] = None) -> CargoHomeCache:
    """
    Build the restore/save driver from parsed arguments.

    Raises:
        ConfigError: If configuration or the store definition is invalid
    """
    config = config or load_cache_config(args)
    store = create_store(config.store)
    cargo_home = args.cargo_home or get_cargo_home()
    work_dir = get_work_dir(args.work_dir)
    job = JobIdentity.from_env(matrix_json=args.matrix)
    logger.debug(f"Job {job} ({job.digest()}), cargo home {cargo_home}, store {store!r}")

    return CargoHomeCache(
        config=config,
        store=store,
        cargo_home=cargo_home,
        project_root=resolve_project_root(args.project_root),
        work_dir=work_dir,
        job=job,
    )


# ============================================================================
# User Interface / Output Formatting
# ============================================================================


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)


def print_warning(message: str):
    """Print warning message to stderr."""
    print(f"WARNING: {message}", file=sys.stderr)

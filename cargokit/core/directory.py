"""
Working directory management for CargoKit.

CargoKit keeps no state that a fresh job needs to bootstrap from. The only
local directories it touches are the cargo home (the dependency root) and a
per-run working directory used to hand state from the restore step to the
save step of the same job.

Directory Structure:
    Run working directory ($RUNNER_TEMP/cargokit, or ~/.cargokit/run):
        - lock/              : Concurrent access control files
        - state.json         : Restore-to-save handoff for the current job
        - check-atime/       : Marker files for access time detection
        - staging/           : Unpacked group archives awaiting verification
"""

import os
from pathlib import Path
from typing import Optional

from cargokit.core.exceptions import CargoKitError


class DirectoryError(CargoKitError):
    """Base exception for directory-related errors."""

    pass


def get_cargo_home() -> Path:
    """
    Get the cargo home directory (the dependency root).

    Returns:
        Path: ``$CARGO_HOME`` if set, otherwise ``~/.cargo``.

    Example:
        >>> get_cargo_home()
        PosixPath('/home/user/.cargo')
    """
    cargo_home = os.environ.get("CARGO_HOME")
    if cargo_home:
        return Path(cargo_home)
    return Path.home() / ".cargo"


def get_work_dir(override: Optional[Path] = None) -> Path:
    """
    Get the per-run working directory.

    Args:
        override: Explicit directory (e.g. from ``--work-dir``)

    Returns:
        Path: The working directory.
            - override, if given
            - $RUNNER_TEMP/cargokit on CI runners
            - %USERPROFILE%\\.cargokit\\run on Windows
            - ~/.cargokit/run elsewhere

    Raises:
        DirectoryError: If no home directory can be determined on Windows
    """
    if override is not None:
        return Path(override)

    runner_temp = os.environ.get("RUNNER_TEMP")
    if runner_temp:
        return Path(runner_temp) / "cargokit"

    if os.name == "nt":
        user_profile = os.environ.get("USERPROFILE")
        if not user_profile:
            raise DirectoryError(
                "USERPROFILE environment variable is not set. "
                "Cannot determine working directory."
            )
        return Path(user_profile) / ".cargokit" / "run"

    return Path.home() / ".cargokit" / "run"


def ensure_work_dir(work_dir: Path) -> Path:
    """
    Create the working directory structure if it doesn't exist.

    Args:
        work_dir: Working directory root

    Returns:
        Path: The working directory

    Raises:
        DirectoryError: If the directory cannot be created
    """
    try:
        for sub in ("lock", "check-atime", "staging"):
            (work_dir / sub).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryError(f"Failed to create working directory {work_dir}: {e}")
    return work_dir


__all__ = [
    "DirectoryError",
    "get_cargo_home",
    "get_work_dir",
    "ensure_work_dir",
]

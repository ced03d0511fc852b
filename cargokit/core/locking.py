"""
Concurrent access control for CargoKit.

Restore and save both read and rewrite the cargo home. Two CargoKit
processes on the same machine must never interleave those passes, or one
could pack a partially-unpacked group. This module provides the file-based
exclusive lock that serializes them, plus a short-lived lock used by the
shared-directory remote store around its writes.

Usage:
    from cargokit.core.locking import LockManager

    lock_manager = LockManager(work_dir / "lock")
    with lock_manager.cargo_home_lock(cargo_home, timeout=600):
        # Safely restore into or save from cargo home
        pass
"""

import hashlib
import logging
import time
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout as LockTimeout

logger = logging.getLogger(__name__)


class LockManager:
    """
    Manages locks for CargoKit resources.

    Uses file-based locking with the `filelock` library for cross-platform
    compatibility and automatic cleanup on process death.

    Attributes:
        lock_dir: Directory where lock files are stored
    """

    def __init__(self, lock_dir: Path):
        """
        Initialize lock manager.

        Args:
            lock_dir: Directory for lock files
        """
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def _lock_path(self, prefix: str, resource: Path) -> Path:
        digest = hashlib.sha256(str(Path(resource).resolve()).encode("utf-8"))
        return self.lock_dir / f"{prefix}-{digest.hexdigest()[:16]}.lock"

    @contextmanager
    def cargo_home_lock(self, cargo_home: Path, timeout: float = 600):
        """
        Acquire exclusive lock on a cargo home for a restore or save pass.

        Args:
            cargo_home: Cargo home directory being restored into or saved from
            timeout: Maximum wait time in seconds (default: 600)

        Yields:
            None

        Raises:
            LockTimeout: If lock can't be acquired within timeout
        """
        lock_path = self._lock_path("cargo-home", cargo_home)
        lock = FileLock(lock_path, timeout=timeout)

        try:
            with lock:
                logger.debug(f"Acquired cargo home lock: {lock_path}")
                yield
                logger.debug(f"Released cargo home lock: {lock_path}")
        except LockTimeout as e:
            logger.error(
                f"Could not acquire cargo home lock for {cargo_home} after {timeout}s. "
                "Another CargoKit process may be running."
            )
            raise LockTimeout(
                f"Could not acquire cargo home lock for {cargo_home} after {timeout}s. "
                "Another CargoKit process may be running."
            ) from e

    def cleanup_stale_locks(self, max_age_hours: int = 24) -> int:
        """
        Remove lock files older than max_age_hours.

        Args:
            max_age_hours: Maximum age in hours before lock is considered stale

        Returns:
            Number of stale locks removed
        """
        if not self.lock_dir.exists():
            return 0

        current_time = time.time()
        removed_count = 0

        for lock_file in self.lock_dir.glob("*.lock"):
            try:
                age_hours = (current_time - lock_file.stat().st_mtime) / 3600

                if age_hours > max_age_hours:
                    lock_file.unlink()
                    logger.info(f"Removed stale lock file: {lock_file}")
                    removed_count += 1
            except OSError as e:
                # Lock may be in use or already deleted
                logger.debug(f"Could not remove lock {lock_file}: {e}")

        return removed_count


@contextmanager
def path_lock(lock_path: Path, timeout: float = 30):
    """
    Hold a file lock for the duration of a short write.

    Args:
        lock_path: Path to lock file
        timeout: Seconds to wait before giving up

    Yields:
        None

    Raises:
        LockTimeout: If lock can't be acquired within timeout
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(lock_path, timeout=timeout)
    with lock:
        logger.debug(f"Acquired lock: {lock_path}")
        yield
    logger.debug(f"Released lock: {lock_path}")


__all__ = [
    "LockManager",
    "path_lock",
    "LockTimeout",
]

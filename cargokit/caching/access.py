"""
Access tracking strategies.

Decides which previously cached dependency items are still in use, so that
groups can be rebuilt without entries no tracked project needs any more.

Two strategies exist and exactly one is selected per run:

- ``AccessTimeTracking``: after restore, every restored file has its access
  time set well behind its modification time. At save time an item is in
  use if any of its files was read since then. Under relatime semantics a
  read only bumps the access time when it is older than the modification
  time, so "atime >= mtime" is accepted as evidence of use alongside
  "atime >= restore time".
- ``LockfileHashFallback``: for filesystems without usable access times
  (Windows in particular). Nothing is pruned; instead the hash of all
  lockfile contents is mixed into every cache key, so any lockfile change
  starts the caches afresh rather than letting them grow forever.

Example:
    >>> strategy = select_strategy(TrackingMode.AUTO, detect_platform(), work_dir / "check-atime")
    >>> report = strategy.classify(scan.items, scan.lockfiles, window_start)
    >>> report.candidates_in(Category.CRATE_FILE)
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Set, Tuple

from cargokit.cargo.home import Category
from cargokit.cargo.lockfiles import LockfileSet
from cargokit.cargo.scanner import DependencyItem
from cargokit.core.exceptions import ConfigError
from cargokit.core.filesystem import (
    NANOS_PER_SECOND,
    get_file_times,
    iter_file_paths,
    set_atime_behind_mtime,
)
from cargokit.core.platform import PlatformInfo

logger = logging.getLogger(__name__)

# Far enough in the past to cover even day-granular access times (vFAT)
REVERT_OFFSET = timedelta(hours=36)

ATIME_SETTLE_SECONDS = 0.005


class TrackingMode(Enum):
    """Configured tracking strategy selection."""

    AUTO = "auto"
    ACCESS_TIME = "access-time"
    LOCKFILE_HASH = "lockfile-hash"

    @classmethod
    def from_name(cls, name: str) -> "TrackingMode":
        for mode in cls:
            if mode.value == name:
                return mode
        valid = ", ".join(m.value for m in cls)
        raise ConfigError(f"Invalid tracking mode: '{name}' (expected one of {valid})")


@dataclass
class AccessReport:
    """
    Classification of dependency items.

    Entries are ``(category, identifier)`` pairs since identifiers are only
    unique within a category.
    """

    used: Set[Tuple[Category, str]] = field(default_factory=set)
    candidates: Set[Tuple[Category, str]] = field(default_factory=set)

    def used_in(self, category: Category) -> Set[str]:
        return {ident for cat, ident in self.used if cat is category}

    def candidates_in(self, category: Category) -> Set[str]:
        return {ident for cat, ident in self.candidates if cat is category}


# ============================================================================
# Strategies
# ============================================================================


class TrackingStrategy(ABC):
    """
    Abstract base for access tracking strategies.

    Attributes:
        name: Strategy name, persisted between restore and save
        prunes: Whether the strategy ever yields prune candidates
    """

    name: str = ""
    prunes: bool = False

    @abstractmethod
    def key_modifier(self, lockfile_hash: str) -> Optional[str]:
        """Extra material mixed into every cache key, or None."""
        pass

    @abstractmethod
    def prepare_restored(self, paths: Iterable[Path]) -> int:
        """
        Prepare freshly restored item paths for tracking.

        Returns:
            Number of files touched
        """
        pass

    @abstractmethod
    def classify(
        self,
        items: Iterable[DependencyItem],
        lockfiles: LockfileSet,
        window_start: float,
    ) -> AccessReport:
        """
        Split items into used ones and prune candidates.

        Args:
            items: Items from the save-time scan
            lockfiles: Lockfiles discovered under the project tree
            window_start: Start of the retention window (restore time,
                seconds since the epoch)
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class AccessTimeTracking(TrackingStrategy):
    """Prunes items whose files were not read since restore."""

    name = "access-time"
    prunes = True

    def __init__(self, revert_offset: timedelta = REVERT_OFFSET):
        self.revert_offset = revert_offset

    def key_modifier(self, lockfile_hash: str) -> Optional[str]:
        return None

    def prepare_restored(self, paths: Iterable[Path]) -> int:
        """Set every file's access time behind its modification time."""
        offset = self.revert_offset.total_seconds()
        count = 0
        for path in paths:
            for file_path in iter_file_paths(Path(path)):
                try:
                    set_atime_behind_mtime(file_path, offset)
                    count += 1
                except OSError as e:
                    # Unreverted files merely look used at save time
                    logger.debug(f"Could not revert access time of {file_path}: {e}")
        logger.debug(f"Reverted access times of {count} file(s)")
        return count

    def is_recently_used(self, item: DependencyItem, window_start_ns: int) -> bool:
        """
        Whether any file of an item was accessed within the window.

        An item without files cannot be judged and counts as used.
        """
        if not item.file_times:
            return True
        return any(
            times.accessed_since_modified or times.atime_ns >= window_start_ns
            for times in item.file_times
        )

    def classify(
        self,
        items: Iterable[DependencyItem],
        lockfiles: LockfileSet,
        window_start: float,
    ) -> AccessReport:
        window_start_ns = int(window_start * NANOS_PER_SECOND)
        report = AccessReport()

        for item in items:
            entry = (item.category, item.identifier)
            if item.crate_name_version in lockfiles.referenced_crates:
                report.used.add(entry)
            elif self.is_recently_used(item, window_start_ns):
                report.used.add(entry)
            else:
                report.candidates.add(entry)

        logger.debug(
            f"Access times: {len(report.used)} item(s) used, "
            f"{len(report.candidates)} prune candidate(s)"
        )
        return report


class LockfileHashFallback(TrackingStrategy):
    """Never prunes; keys change whenever any lockfile changes."""

    name = "lockfile-hash"
    prunes = False

    def key_modifier(self, lockfile_hash: str) -> Optional[str]:
        return lockfile_hash

    def prepare_restored(self, paths: Iterable[Path]) -> int:
        return 0

    def classify(
        self,
        items: Iterable[DependencyItem],
        lockfiles: LockfileSet,
        window_start: float,
    ) -> AccessReport:
        return AccessReport(used={(item.category, item.identifier) for item in items})


def strategy_from_name(name: str) -> TrackingStrategy:
    """
    Recreate a strategy from its persisted name.

    Raises:
        ConfigError: If the name is unknown
    """
    if name == AccessTimeTracking.name:
        return AccessTimeTracking()
    if name == LockfileHashFallback.name:
        return LockfileHashFallback()
    raise ConfigError(f"Unknown tracking strategy: '{name}'")


# ============================================================================
# Capability Detection
# ============================================================================


def supports_atime(check_dir: Path) -> bool:
    """
    Check whether the filesystem at check_dir keeps relatime-style access times.

    Writes a marker file, sets its access time behind its modification time,
    reads it back and checks that the read bumped the access time.

    Args:
        check_dir: Directory on the same filesystem as cargo home

    Returns:
        True if access times are usable for tracking
    """
    check_dir = Path(check_dir)
    check_dir.mkdir(parents=True, exist_ok=True)
    marker = check_dir / f"marker-{uuid.uuid4().hex[:16]}"

    try:
        marker.write_bytes(b"\0")
        set_atime_behind_mtime(marker, REVERT_OFFSET.total_seconds())

        if get_file_times(marker).accessed_since_modified:
            # Setting timestamps should work even where reads never update them
            logger.warning("Appeared to be unable to even set file timestamps")
            return False

        marker.read_bytes()
        time.sleep(ATIME_SETTLE_SECONDS)
        return get_file_times(marker).accessed_since_modified
    finally:
        try:
            marker.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Could not remove access time marker {marker}: {e}")


def select_strategy(
    mode: TrackingMode, platform_info: PlatformInfo, check_dir: Path
) -> TrackingStrategy:
    """
    Choose the tracking strategy for this run.

    Windows always gets the lockfile-hash fallback since it never
    implemented relatime semantics.

    Args:
        mode: Configured tracking mode
        platform_info: Platform of the current job
        check_dir: Directory for the access time check (auto mode)

    Returns:
        Selected strategy
    """
    if platform_info.is_windows:
        if mode is TrackingMode.ACCESS_TIME:
            logger.warning(
                "Access time tracking is not supported on Windows; "
                "using lockfile hashing instead"
            )
        return LockfileHashFallback()

    if mode is TrackingMode.LOCKFILE_HASH:
        return LockfileHashFallback()
    if mode is TrackingMode.ACCESS_TIME:
        return AccessTimeTracking()

    logger.info("Checking to see if filesystem supports access times...")
    try:
        supported = supports_atime(check_dir)
    except OSError as e:
        logger.warning(f"Access time check failed: {e}")
        supported = False

    if supported:
        logger.info(
            "File access times supported; unused items will be pruned from cached groups"
        )
        return AccessTimeTracking()

    logger.info(
        "File access times not supported; cannot prune cached groups. "
        "The hash of all Cargo.lock files will be part of every cache key, so "
        "caches are rebuilt from scratch whenever a lockfile changes."
    )
    return LockfileHashFallback()


__all__ = [
    "REVERT_OFFSET",
    "TrackingMode",
    "AccessReport",
    "TrackingStrategy",
    "AccessTimeTracking",
    "LockfileHashFallback",
    "strategy_from_name",
    "supports_atime",
    "select_strategy",
]

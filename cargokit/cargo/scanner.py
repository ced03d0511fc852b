"""
Dependency scanner.

Reads the on-disk dependency state of a cargo home and produces the set of
dependency items, each tagged with its category, identifier and the cache
group it belongs to. The scan never mutates disk state.

Example:
    >>> scanner = DependencyScanner(get_cargo_home(), list(Category))
    >>> result = scanner.scan(discover_lockfiles(project_root))
    >>> for item in result.items:
    ...     print(item.category.short_name, item.identifier)
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from cargokit.cargo.home import CRATE_SUFFIX, Category, category_root
from cargokit.cargo.lockfiles import LockfileSet, read_lockfiles
from cargokit.core.exceptions import ScanIOError
from cargokit.core.filesystem import FileTimes, get_file_times, walk_files

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyItem:
    """
    One addressable unit of cached state.

    Attributes:
        category: Index, crate file or Git repository
        identifier: Stable identifier, unique within the category
        group_name: Name of the cache group the item belongs to
        relative_path: POSIX path relative to cargo home
        size: Total size in bytes
        file_times: Timestamps of every file inside the item, in walk order
    """

    category: Category
    identifier: str
    group_name: str
    relative_path: str
    size: int
    file_times: Tuple[FileTimes, ...] = ()

    @property
    def crate_name_version(self) -> Optional[str]:
        """``name-version`` for crate archives, None for other categories."""
        if self.category is not Category.CRATE_FILE:
            return None
        return self.identifier.rsplit("/", 1)[-1]


@dataclass
class ScanResult:
    """
    Output of one scan.

    Attributes:
        items: Every dependency item found, sorted by (category, identifier)
        group_names: Groups present on disk per category, including empty ones
        lockfiles: Lockfile contents and references
        scanned_at: Wall-clock time the scan started (seconds since the epoch)
    """

    items: List[DependencyItem] = field(default_factory=list)
    group_names: Dict[Category, Set[str]] = field(default_factory=dict)
    lockfiles: LockfileSet = field(default_factory=LockfileSet)
    scanned_at: float = 0.0


class DependencyScanner:
    """
    Scans a cargo home for cacheable dependency items.

    Attributes:
        cargo_home: Dependency root directory
        categories: Categories to scan
    """

    def __init__(self, cargo_home: Path, categories: List[Category]):
        self.cargo_home = Path(cargo_home)
        self.categories = list(categories)

    def scan(self, lockfile_paths: Optional[List[Path]] = None) -> ScanResult:
        """
        Scan every configured category and read the given lockfiles.

        Args:
            lockfile_paths: Lockfiles discovered under the project tree.
                Absence is not an error.

        Returns:
            ScanResult

        Raises:
            ScanIOError: If cargo home or any category directory is unreadable
        """
        if not self.cargo_home.is_dir():
            raise ScanIOError(self.cargo_home, "not a directory")

        result = ScanResult(scanned_at=time.time())
        for category in self.categories:
            items, group_names = self.scan_category(category)
            result.items.extend(items)
            result.group_names[category] = group_names
            logger.debug(
                f"Found {len(items)} {category.friendly_name} item(s) "
                f"in {len(group_names)} group(s)"
            )

        result.items.sort(key=lambda item: (item.category.value, item.identifier))

        if lockfile_paths:
            result.lockfiles = read_lockfiles(lockfile_paths)
        else:
            logger.info(
                "No Cargo.lock files found; crate liveness will rely on access times only"
            )

        return result

    def scan_category(
        self, category: Category
    ) -> Tuple[List[DependencyItem], Set[str]]:
        """
        Scan a single category.

        A missing category directory yields no items and no groups.

        Returns:
            Tuple of (items, group names present on disk)

        Raises:
            ScanIOError: If the category directory cannot be read
        """
        root = category_root(self.cargo_home, category)
        if not root.exists():
            return [], set()

        try:
            group_dirs = sorted(
                entry.name
                for entry in os.scandir(root)
                if entry.is_dir(follow_symlinks=False)
            )
            items: List[DependencyItem] = []
            for group_name in group_dirs:
                group_path = root / group_name
                if category.aggregates_members:
                    items.extend(self._scan_crate_dir(category, group_name, group_path))
                else:
                    items.append(self._scan_tree_item(category, group_name, group_path))
        except OSError as e:
            raise ScanIOError(root, str(e)) from e

        return items, set(group_dirs)

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.cargo_home).as_posix()

    def _scan_tree_item(
        self, category: Category, group_name: str, path: Path
    ) -> DependencyItem:
        ignores = category.item_ignores()
        times: List[FileTimes] = []
        size = 0
        for rel in walk_files(path, ignores):
            stat = os.lstat(path / rel)
            times.append(FileTimes(atime_ns=stat.st_atime_ns, mtime_ns=stat.st_mtime_ns))
            size += stat.st_size
        return DependencyItem(
            category=category,
            identifier=group_name,
            group_name=group_name,
            relative_path=self._relative(path),
            size=size,
            file_times=tuple(times),
        )

    def _scan_crate_dir(
        self, category: Category, group_name: str, path: Path
    ) -> List[DependencyItem]:
        items = []
        for entry in sorted(os.scandir(path), key=lambda e: e.name):
            if not entry.name.endswith(CRATE_SUFFIX) or entry.is_dir(
                follow_symlinks=False
            ):
                continue
            crate_path = Path(entry.path)
            name_version = entry.name[: -len(CRATE_SUFFIX)]
            items.append(
                DependencyItem(
                    category=category,
                    identifier=f"{group_name}/{name_version}",
                    group_name=group_name,
                    relative_path=self._relative(crate_path),
                    size=entry.stat(follow_symlinks=False).st_size,
                    file_times=(get_file_times(crate_path),),
                )
            )
        return items


__all__ = [
    "DependencyItem",
    "ScanResult",
    "DependencyScanner",
]

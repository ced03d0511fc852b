"""
Cargo home layout.

Describes where each category of cached dependency state lives inside a
cargo home and how it is split into cache groups:

- ``indices``: ``registry/index/<registry-dir>/``, one group per registry
- ``crates``: ``registry/cache/<registry-dir>/*.crate``, one group per registry
- ``git-repos``: ``git/db/<repo-dir>/``, one group per repository
"""

from datetime import timedelta
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional

from cargokit.core.exceptions import ConfigError
from cargokit.core.filesystem import Ignores

INDEX_LAST_UPDATED = ".last-updated"
CRATE_SUFFIX = ".crate"


class Category(Enum):
    """Category of cached dependency state."""

    INDEX = "indices"
    CRATE_FILE = "crates"
    GIT_REPO = "git-repos"

    @property
    def short_name(self) -> str:
        return self.value

    @property
    def friendly_name(self) -> str:
        return {
            Category.INDEX: "registry indices",
            Category.CRATE_FILE: "crate files",
            Category.GIT_REPO: "Git repositories",
        }[self]

    @property
    def relative_path(self) -> PurePosixPath:
        """Location of this category relative to cargo home."""
        return {
            Category.INDEX: PurePosixPath("registry/index"),
            Category.CRATE_FILE: PurePosixPath("registry/cache"),
            Category.GIT_REPO: PurePosixPath("git/db"),
        }[self]

    @property
    def aggregates_members(self) -> bool:
        """Whether one group holds many items (crate files) or exactly one."""
        return self is Category.CRATE_FILE

    def item_ignores(self) -> Ignores:
        """Names skipped when hashing or packing one item of this category."""
        ignores = Ignores()
        if self is Category.INDEX:
            ignores.add(1, INDEX_LAST_UPDATED)
        return ignores

    def default_min_recache_interval(self) -> timedelta:
        if self is Category.INDEX:
            return timedelta(days=1)
        return timedelta(0)

    @classmethod
    def from_name(cls, name: str) -> "Category":
        """
        Parse a category from its configuration name.

        Raises:
            ConfigError: If the name is not one of indices, crates, git-repos
        """
        for category in cls:
            if category.value == name:
                return category
        valid = ", ".join(c.value for c in cls)
        raise ConfigError(f"Unknown cache category: '{name}' (expected one of {valid})")

    @classmethod
    def parse_list(cls, names: Optional[Iterable[str]]) -> List["Category"]:
        """
        Parse a list of configuration names, defaulting to every category.

        Order follows the enum declaration so callers iterate deterministically.
        """
        if names is None:
            return list(cls)
        selected = {cls.from_name(name) for name in names}
        return [category for category in cls if category in selected]


def category_root(cargo_home: Path, category: Category) -> Path:
    """Absolute directory holding all items of a category."""
    return Path(cargo_home).joinpath(*category.relative_path.parts)


__all__ = [
    "Category",
    "category_root",
    "INDEX_LAST_UPDATED",
    "CRATE_SUFFIX",
]

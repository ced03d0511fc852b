"""
Cache group building and fingerprinting.

Dependency items are partitioned into cache groups, the unit of remote
caching:

- registry indices and Git repositories: one item per group
- crate files: every archive pulled from one registry in a single group

A group's fingerprint is a SHA-256 over its members in canonical
(identifier-sorted) order, each contributing its identifier and a digest
of its byte content. Fingerprints are therefore independent of filesystem
enumeration order and identical across machines for identical content.
An empty group fingerprints to the digest of the empty input.

Group membership only grows through :meth:`CacheGroup.merge`; the only way
to drop a member is the explicit :meth:`CacheGroup.prune`.
"""

import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from cargokit.cargo.home import Category
from cargokit.cargo.scanner import DependencyItem, ScanResult
from cargokit.core.filesystem import compute_file_hash, walk_files

logger = logging.getLogger(__name__)

EMPTY_FINGERPRINT = hashlib.sha256().hexdigest()


@dataclass(frozen=True)
class GroupMember:
    """
    One member of a cache group.

    Attributes:
        identifier: Item identifier
        relative_path: POSIX path relative to cargo home
        digest: SHA-256 content digest at fingerprinting time
    """

    identifier: str
    relative_path: str
    digest: str

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "relative_path": self.relative_path,
            "digest": self.digest,
        }

    @staticmethod
    def from_dict(data: dict) -> "GroupMember":
        return GroupMember(
            identifier=data["identifier"],
            relative_path=data["relative_path"],
            digest=data["digest"],
        )


def compute_fingerprint(members: Iterable[GroupMember]) -> str:
    """
    Fingerprint a member set.

    Args:
        members: Members in any order

    Returns:
        Hex SHA-256 digest; EMPTY_FINGERPRINT for no members
    """
    hasher = hashlib.sha256()
    for member in sorted(members, key=lambda m: m.identifier):
        for part in (member.identifier, member.relative_path, member.digest):
            encoded = part.encode("utf-8")
            hasher.update(len(encoded).to_bytes(8, "little"))
            hasher.update(encoded)
    return hasher.hexdigest()


class DeltaAction(Enum):
    ADDED = "Added"
    REMOVED = "Removed"
    CHANGED = "Changed"


@dataclass(frozen=True)
class CacheGroup:
    """
    Unit of remote caching.

    Instances are immutable. Every change produces a new group, so a group
    evolves as a sequence of merges and explicit prunes.

    Attributes:
        category: Category of every member
        name: Human-readable group name (registry or repository directory)
        members: Members sorted by identifier
    """

    category: Category
    name: str
    members: Tuple[GroupMember, ...] = ()
    _fingerprint: str = field(default="", init=False, repr=False, compare=False)

    def __post_init__(self):
        ordered = tuple(sorted(self.members, key=lambda m: m.identifier))
        identifiers = [m.identifier for m in ordered]
        if len(set(identifiers)) != len(identifiers):
            raise ValueError(f"Duplicate member identifiers in group '{self.name}'")
        object.__setattr__(self, "members", ordered)
        object.__setattr__(self, "_fingerprint", compute_fingerprint(ordered))

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def identifiers(self) -> Set[str]:
        return {member.identifier for member in self.members}

    @property
    def is_empty(self) -> bool:
        return not self.members

    def member(self, identifier: str) -> Optional[GroupMember]:
        for member in self.members:
            if member.identifier == identifier:
                return member
        return None

    def merge(self, members: Iterable[GroupMember]) -> "CacheGroup":
        """
        Add new members and update the content of existing ones.

        No existing member is ever dropped by a merge.
        """
        merged: Dict[str, GroupMember] = {m.identifier: m for m in self.members}
        for member in members:
            merged[member.identifier] = member
        return CacheGroup(self.category, self.name, tuple(merged.values()))

    def prune(self, identifiers: Iterable[str]) -> "CacheGroup":
        """Explicitly remove members. Unknown identifiers are ignored."""
        drop = set(identifiers)
        kept = tuple(m for m in self.members if m.identifier not in drop)
        return CacheGroup(self.category, self.name, kept)

    def changes_from(self, other: "CacheGroup") -> List[Tuple[str, DeltaAction]]:
        """List members added, removed or changed relative to ``other``."""
        before = {m.identifier: m for m in other.members}
        after = {m.identifier: m for m in self.members}
        delta = []
        for identifier in sorted(set(before) | set(after)):
            if identifier not in before:
                delta.append((identifier, DeltaAction.ADDED))
            elif identifier not in after:
                delta.append((identifier, DeltaAction.REMOVED))
            elif before[identifier].digest != after[identifier].digest:
                delta.append((identifier, DeltaAction.CHANGED))
        return delta

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "name": self.name,
            "fingerprint": self.fingerprint,
            "members": [m.to_dict() for m in self.members],
        }

    @staticmethod
    def from_dict(data: dict) -> "CacheGroup":
        return CacheGroup(
            category=Category.from_name(data["category"]),
            name=data["name"],
            members=tuple(GroupMember.from_dict(m) for m in data.get("members", [])),
        )


def render_delta(delta: List[Tuple[str, DeltaAction]]) -> str:
    """Render a delta as one ``Action: identifier`` line per entry."""
    return "\n".join(f"{action.value}: {identifier}" for identifier, action in delta)


def compute_item_digest(cargo_home: Path, item: DependencyItem) -> str:
    """
    Digest the byte content of one item.

    Single files hash their bytes. Directories hash every file's relative
    path and content digest in sorted path order, honouring the category's
    ignores.
    """
    path = Path(cargo_home) / item.relative_path
    if path.is_file() or path.is_symlink():
        return compute_file_hash(path)

    hasher = hashlib.sha256()
    for rel in walk_files(path, item.category.item_ignores()):
        hasher.update(rel.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(compute_file_hash(path / rel).encode("ascii"))
        hasher.update(b"\n")
    return hasher.hexdigest()


class CacheGroupBuilder:
    """
    Partitions dependency items into cache groups.

    Content hashing is spread over a thread pool; results are keyed by
    identifier so the pool's completion order never leaks into a
    fingerprint.

    Attributes:
        cargo_home: Dependency root the items live in
        max_workers: Hashing threads (default: min(8, cpu count))
    """

    def __init__(self, cargo_home: Path, max_workers: Optional[int] = None):
        self.cargo_home = Path(cargo_home)
        self.max_workers = max_workers or min(8, os.cpu_count() or 1)

    def digest_items(self, items: List[DependencyItem]) -> Dict[str, GroupMember]:
        """Compute members for items, keyed by ``category/identifier``."""
        if not items:
            return {}

        def _member(item: DependencyItem) -> Tuple[str, GroupMember]:
            digest = compute_item_digest(self.cargo_home, item)
            return (
                f"{item.category.value}/{item.identifier}",
                GroupMember(item.identifier, item.relative_path, digest),
            )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return dict(pool.map(_member, items))

    def build(
        self,
        items: List[DependencyItem],
        group_names: Optional[Mapping[Category, Iterable[str]]] = None,
    ) -> Dict[Tuple[Category, str], CacheGroup]:
        """
        Build groups from items.

        Args:
            items: Dependency items to partition
            group_names: Groups known to exist even if they have no items

        Returns:
            Groups keyed by (category, group name)
        """
        members = self.digest_items(items)
        partitions: Dict[Tuple[Category, str], List[GroupMember]] = {}

        for category, names in (group_names or {}).items():
            for name in names:
                partitions.setdefault((category, name), [])

        for item in items:
            member = members[f"{item.category.value}/{item.identifier}"]
            partitions.setdefault((item.category, item.group_name), []).append(member)

        groups = {
            key: CacheGroup(key[0], key[1], tuple(group_members))
            for key, group_members in partitions.items()
        }
        logger.debug(f"Built {len(groups)} cache group(s) from {len(items)} item(s)")
        return groups

    def build_from_scan(
        self, scan: ScanResult
    ) -> Dict[Tuple[Category, str], CacheGroup]:
        return self.build(scan.items, scan.group_names)


__all__ = [
    "EMPTY_FINGERPRINT",
    "GroupMember",
    "CacheGroup",
    "DeltaAction",
    "compute_fingerprint",
    "compute_item_digest",
    "render_delta",
    "CacheGroupBuilder",
]

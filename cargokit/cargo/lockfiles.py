"""
Cargo.lock discovery, parsing and hashing.

Lockfiles serve two purposes:
- They mark crate archives as live, so access-time pruning never drops a
  crate a tracked project still depends on.
- On platforms without usable access times, the hash of all lockfile
  contents becomes part of every cache key, so any lockfile change starts
  the caches afresh instead of letting them grow monotonically.

Example:
    >>> from cargokit.cargo.lockfiles import discover_lockfiles, read_lockfiles
    >>> lockfiles = read_lockfiles(discover_lockfiles(Path.cwd()))
    >>> print(lockfiles.content_hash())
"""

import hashlib
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List

from cargokit.core.exceptions import LockfileReadError

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "Cargo.lock"
SKIPPED_DIRS = frozenset({"target", ".git"})
REGISTRY_SOURCE_PREFIXES = ("registry+", "sparse+")


@dataclass
class LockfileSet:
    """
    Raw contents and parsed package references of all discovered lockfiles.

    Attributes:
        contents: Raw bytes keyed by lockfile path string
        referenced_crates: ``name-version`` of every registry package
        errors: Lockfiles that could not be read or parsed
    """

    contents: Dict[str, bytes] = field(default_factory=dict)
    referenced_crates: FrozenSet[str] = frozenset()
    errors: List[LockfileReadError] = field(default_factory=list)

    @property
    def num_files(self) -> int:
        return len(self.contents)

    def content_hash(self) -> str:
        """
        SHA-256 over the concatenated lockfile contents in sorted path order.

        Returns the digest of the empty input when no lockfiles were found.
        """
        hasher = hashlib.sha256()
        for path in sorted(self.contents):
            hasher.update(self.contents[path])
        return hasher.hexdigest()


def discover_lockfiles(project_root: Path) -> List[Path]:
    """
    Find every Cargo.lock below a project root.

    Build output and VCS metadata directories are skipped.

    Args:
        project_root: Directory to search

    Returns:
        Lockfile paths sorted by their string form
    """
    project_root = Path(project_root)
    found: List[Path] = []

    if not project_root.is_dir():
        logger.debug(f"Project root does not exist, no lockfiles: {project_root}")
        return found

    for dirpath, dirnames, filenames in os.walk(project_root):
        dirnames[:] = [d for d in dirnames if d not in SKIPPED_DIRS]
        if LOCKFILE_NAME in filenames:
            found.append(Path(dirpath) / LOCKFILE_NAME)

    found.sort(key=str)
    logger.debug(f"Discovered {len(found)} lockfile(s) under {project_root}")
    return found


def parse_lockfile_packages(content: bytes, path: Path) -> FrozenSet[str]:
    """
    Extract ``name-version`` for every registry package in a lockfile.

    Args:
        content: Raw lockfile bytes
        path: Lockfile path (for error messages)

    Returns:
        Set of ``name-version`` strings

    Raises:
        LockfileReadError: If the content is not valid lockfile TOML or a
            package field has the wrong type
    """
    try:
        data = tomllib.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise LockfileReadError(path, str(e)) from e

    packages = data.get("package", [])
    if not isinstance(packages, list):
        raise LockfileReadError(path, "'package' is not an array of tables")

    crates = set()
    for index, package in enumerate(packages):
        if not isinstance(package, dict):
            continue
        for key in ("source", "name", "version"):
            if not isinstance(package.get(key, ""), str):
                raise LockfileReadError(
                    path, f"package entry {index} has a non-string '{key}'"
                )
        source = package.get("source", "")
        if not source.startswith(REGISTRY_SOURCE_PREFIXES):
            continue
        name = package.get("name")
        version = package.get("version")
        if name and version:
            crates.add(f"{name}-{version}")
    return frozenset(crates)


def read_lockfiles(paths: List[Path]) -> LockfileSet:
    """
    Read and parse a set of lockfiles.

    An unreadable or malformed lockfile is reported and skipped; it never
    aborts the scan. A lockfile that reads but fails to parse still
    contributes its bytes to the content hash.

    Args:
        paths: Lockfile paths

    Returns:
        LockfileSet with contents, crate references and errors
    """
    result = LockfileSet()
    referenced = set()

    for path in paths:
        try:
            content = Path(path).read_bytes()
        except OSError as e:
            error = LockfileReadError(path, str(e))
            logger.warning(f"{error}; crate liveness from this project is unknown")
            result.errors.append(error)
            continue

        result.contents[str(path)] = content
        try:
            referenced.update(parse_lockfile_packages(content, path))
        except LockfileReadError as error:
            logger.warning(f"{error}; crate liveness from this project is unknown")
            result.errors.append(error)

    result.referenced_crates = frozenset(referenced)
    logger.debug(
        f"Read {result.num_files} lockfile(s) referencing "
        f"{len(result.referenced_crates)} registry crate(s)"
    )
    return result


__all__ = [
    "LOCKFILE_NAME",
    "LockfileSet",
    "discover_lockfiles",
    "parse_lockfile_packages",
    "read_lockfiles",
]

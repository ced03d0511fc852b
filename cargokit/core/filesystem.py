"""
Cross-platform file system utilities for CargoKit.

This module provides the file operations the cache engine builds on:
- Deterministic directory walking with depth-scoped ignores
- Safe file operations (atomic writes, safe deletion)
- File hashing
- Access/modification timestamp reads and rewrites

All timestamps are handled as integer nanoseconds so that comparisons are
exact on filesystems with coarse timestamp granularity.
"""

import hashlib
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Union

from cargokit.core.exceptions import CargoKitError

IS_WINDOWS = os.name == "nt"
IS_UNIX = not IS_WINDOWS

NANOS_PER_SECOND = 1_000_000_000


class FilesystemError(CargoKitError):
    """Base exception for filesystem operations."""

    pass


# ============================================================================
# Directory Walking
# ============================================================================


class Ignores:
    """
    Names to skip while walking a tree, keyed by depth.

    Depth 0 is the walk root itself; depth 1 its direct children, and so on.

    Example:
        >>> ignores = Ignores()
        >>> ignores.add(1, ".last-updated")
        >>> ignores.should_ignore(".last-updated", 1)
        True
    """

    def __init__(self):
        self._by_depth: Dict[int, Set[str]] = {}

    def add(self, depth: int, name: str) -> None:
        self._by_depth.setdefault(depth, set()).add(name)

    def should_ignore(self, name: str, depth: int) -> bool:
        return name in self._by_depth.get(depth, ())

    def __repr__(self) -> str:
        return f"Ignores({self._by_depth!r})"


def walk_files(root: Union[str, Path], ignores: Optional[Ignores] = None) -> List[str]:
    """
    List all files under root as sorted POSIX-style relative paths.

    Symbolic links are reported as files and never followed. The result is
    sorted so callers never depend on filesystem enumeration order.

    Args:
        root: Directory to walk (a plain file yields ``["."]``)
        ignores: Optional depth-scoped names to skip

    Returns:
        Sorted list of relative paths

    Raises:
        OSError: If root or any directory below it cannot be read
    """
    root = Path(root)
    ignores = ignores or Ignores()

    if not root.is_dir() or root.is_symlink():
        return ["."]

    result: List[str] = []

    def _walk(directory: Path, prefix: str, depth: int) -> None:
        with os.scandir(directory) as entries:
            for entry in entries:
                if ignores.should_ignore(entry.name, depth):
                    continue
                rel = f"{prefix}{entry.name}"
                if entry.is_dir(follow_symlinks=False):
                    _walk(Path(entry.path), f"{rel}/", depth + 1)
                else:
                    result.append(rel)

    _walk(root, "", 1)
    result.sort()
    return result


def iter_file_paths(root: Path, ignores: Optional[Ignores] = None) -> Iterator[Path]:
    """Yield absolute paths of the files returned by :func:`walk_files`."""
    for rel in walk_files(root, ignores):
        yield root if rel == "." else root / rel


# ============================================================================
# Timestamps
# ============================================================================


@dataclass(frozen=True)
class FileTimes:
    """Access and modification time of a file in nanoseconds since the epoch."""

    atime_ns: int
    mtime_ns: int

    @property
    def accessed_since_modified(self) -> bool:
        # >= rather than > since timestamps are discrete
        return self.atime_ns >= self.mtime_ns


def get_file_times(path: Union[str, Path]) -> FileTimes:
    """
    Read access and modification times without following symlinks.

    Args:
        path: File to inspect

    Returns:
        FileTimes for the file
    """
    stat = os.lstat(path)
    return FileTimes(atime_ns=stat.st_atime_ns, mtime_ns=stat.st_mtime_ns)


def set_atime_behind_mtime(path: Union[str, Path], offset_seconds: float) -> None:
    """
    Set a file's access time to ``offset_seconds`` before its modification time.

    The modification time is left unchanged. Symlinks are skipped where the
    platform cannot set link timestamps.

    Args:
        path: File to rewrite
        offset_seconds: How far behind mtime the new atime should be
    """
    path = Path(path)
    times = get_file_times(path)
    atime_ns = times.mtime_ns - int(offset_seconds * NANOS_PER_SECOND)

    if path.is_symlink():
        if os.utime not in os.supports_follow_symlinks:
            return
        os.utime(path, ns=(atime_ns, times.mtime_ns), follow_symlinks=False)
    else:
        os.utime(path, ns=(atime_ns, times.mtime_ns))


# ============================================================================
# Safe File Operations
# ============================================================================


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write file atomically using temp file + rename.

    This ensures the file is never in a partially-written state.
    If the write fails, the original file (if any) remains unchanged.

    Args:
        file_path: Path to write to
        content: Content to write (string or bytes)
        encoding: Text encoding (used only for string content)

    Example:
        >>> atomic_write('state.json', '{"key": "value"}')
        >>> atomic_write('blob.tar.gz', b'\\x1f\\x8b...')
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Create temp file in same directory (ensures same filesystem)
    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)

        # Atomic rename (replaces destination if it exists)
        temp_path.replace(file_path)

    except Exception:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


def safe_rmtree(
    path: Union[str, Path], require_prefix: Optional[Union[str, Path]] = None
) -> None:
    """
    Safely remove a directory tree with safeguards.

    Args:
        path: Directory to remove
        require_prefix: If specified, path must be under this directory

    Raises:
        ValueError: If path is not under require_prefix
        FilesystemError: If deletion fails
    """
    path = Path(path).resolve()

    if require_prefix is not None:
        require_prefix = Path(require_prefix).resolve()
        if not path.is_relative_to(require_prefix):
            raise ValueError(
                f"Refusing to delete '{path}': not under required prefix '{require_prefix}'"
            )

    if not path.exists():
        return

    if not path.is_dir():
        raise FilesystemError(f"Path is not a directory: {path}")

    try:
        if IS_WINDOWS:

            def handle_remove_readonly(func, target, exc):
                """Error handler for Windows read-only files."""
                if not os.access(target, os.W_OK):
                    os.chmod(target, 0o777)
                    func(target)
                else:
                    raise

            shutil.rmtree(path, onerror=handle_remove_readonly)
        else:
            shutil.rmtree(path)

    except Exception as e:
        raise FilesystemError(f"Failed to remove directory '{path}': {e}") from e


# ============================================================================
# File Hashing
# ============================================================================


def compute_file_hash(
    file_path: Union[str, Path], algorithm: str = "sha256", chunk_size: int = 65536
) -> str:
    """
    Compute hash of a file.

    Memory-efficient implementation that reads file in chunks. Symlinks are
    hashed by their target string rather than followed.

    Args:
        file_path: Path to file
        algorithm: Hash algorithm ('sha256', 'sha1', 'md5')
        chunk_size: Number of bytes to read at once

    Returns:
        Hex digest of the hash
    """
    file_path = Path(file_path)

    try:
        hasher = hashlib.new(algorithm)
    except ValueError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    if file_path.is_symlink():
        hasher.update(b"symlink:")
        hasher.update(os.readlink(file_path).encode("utf-8"))
        return hasher.hexdigest()

    if not file_path.exists():
        raise FilesystemError(f"File not found: {file_path}")

    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)

    return hasher.hexdigest()


# ============================================================================
# Temporary File/Directory Management
# ============================================================================


@contextmanager
def temporary_directory(
    prefix: str = "cargokit_", parent: Optional[Path] = None, cleanup: bool = True
):
    """
    Context manager for temporary directory with automatic cleanup.

    Args:
        prefix: Prefix for temp directory name
        parent: Directory to create it in (default: system temp dir)
        cleanup: If True, remove directory on exit

    Yields:
        Path to temporary directory
    """
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    temp_dir = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))

    try:
        yield temp_dir
    finally:
        if cleanup and temp_dir.exists():
            safe_rmtree(temp_dir)


__all__ = [
    "FilesystemError",
    "Ignores",
    "walk_files",
    "iter_file_paths",
    "FileTimes",
    "get_file_times",
    "set_atime_behind_mtime",
    "atomic_write",
    "safe_rmtree",
    "compute_file_hash",
    "temporary_directory",
    "NANOS_PER_SECOND",
]

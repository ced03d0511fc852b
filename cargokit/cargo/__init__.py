"""
Cargo home layout and dependency scanning.

Modules:
    home: Categories of cached state and where they live in cargo home
    lockfiles: Cargo.lock discovery, parsing and hashing
    scanner: Read-only scan producing dependency items
"""

from .home import Category, category_root
from .lockfiles import (
    LockfileSet,
    discover_lockfiles,
    read_lockfiles,
)
from .scanner import (
    DependencyItem,
    DependencyScanner,
    ScanResult,
)

__all__ = [
    "Category",
    "category_root",
    "LockfileSet",
    "discover_lockfiles",
    "read_lockfiles",
    "DependencyItem",
    "DependencyScanner",
    "ScanResult",
]

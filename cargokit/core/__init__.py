"""
Core functionality for CargoKit.

This package contains the foundational modules that other components depend on.
"""

from .directory import (
    get_cargo_home,
    get_work_dir,
    ensure_work_dir,
    DirectoryError,
)

from .locking import (
    LockManager,
    path_lock,
    LockTimeout,
)

from .platform import (
    PlatformInfo,
    detect_platform,
    parse_platform_string,
    clear_platform_cache,
)

from .state import (
    GroupState,
    RunState,
    RunStateManager,
)

from .exceptions import (
    CargoKitError,
    ConfigError,
    StateError,
    ScanIOError,
    LockfileReadError,
    RemoteStoreError,
    RemoteQueryError,
    RemoteUploadError,
    RemoteDownloadError,
    FingerprintMismatchError,
    ArchiveError,
)

__all__ = [
    # Directory
    "get_cargo_home",
    "get_work_dir",
    "ensure_work_dir",
    "DirectoryError",
    # Locking
    "LockManager",
    "path_lock",
    "LockTimeout",
    # Platform
    "PlatformInfo",
    "detect_platform",
    "parse_platform_string",
    "clear_platform_cache",
    # State
    "GroupState",
    "RunState",
    "RunStateManager",
    # Exceptions
    "CargoKitError",
    "ConfigError",
    "StateError",
    "ScanIOError",
    "LockfileReadError",
    "RemoteStoreError",
    "RemoteQueryError",
    "RemoteUploadError",
    "RemoteDownloadError",
    "FingerprintMismatchError",
    "ArchiveError",
]

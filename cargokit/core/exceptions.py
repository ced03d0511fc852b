"""
Centralized exception hierarchy for CargoKit.

This module defines all custom exceptions used across the codebase.
Errors that only degrade caching efficiency are recovered where they are
raised and logged; errors that make the dependency state itself unusable
propagate to the command front end as job failures.
"""

from typing import Optional


# ============================================================================
# Base Exceptions
# ============================================================================


class CargoKitError(Exception):
    """Base exception for all CargoKit errors."""

    pass


# ============================================================================
# Configuration and State Exceptions
# ============================================================================


class ConfigError(CargoKitError):
    """Configuration parsing or validation error."""

    pass


class StateError(CargoKitError):
    """Raised when the per-run state handed from restore to save is unusable."""

    pass


# ============================================================================
# Scanning Exceptions
# ============================================================================


class ScanIOError(CargoKitError):
    """Raised when the dependency root cannot be read. Always fatal."""

    def __init__(self, path, reason: str = ""):
        self.path = path
        msg = f"Unable to read dependency root: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class LockfileReadError(CargoKitError):
    """Raised when an individual lockfile cannot be read or parsed."""

    def __init__(self, path, reason: str = ""):
        self.path = path
        msg = f"Unable to read lockfile: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


# ============================================================================
# Remote Store Exceptions
# ============================================================================


class RemoteStoreError(CargoKitError):
    """Base exception for remote blob store failures."""

    def __init__(self, key: str, reason: str = ""):
        self.key = key
        self.reason = reason
        msg = f"{self._action} failed for '{key}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

    _action = "Remote operation"


class RemoteQueryError(RemoteStoreError):
    """Version query against the remote store failed or timed out."""

    _action = "Remote version query"


class RemoteUploadError(RemoteStoreError):
    """Upload of a blob or version record was rejected or failed."""

    _action = "Remote upload"


class RemoteDownloadError(RemoteStoreError):
    """Download of a blob failed or timed out."""

    _action = "Remote download"


# ============================================================================
# Cache Content Exceptions
# ============================================================================


class FingerprintMismatchError(CargoKitError):
    """Restored content does not match the expected group partitioning."""

    def __init__(self, group: str, expected: str, actual: Optional[str]):
        self.group = group
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Restored group '{group}' has fingerprint {actual}, expected {expected}"
        )


class ArchiveError(CargoKitError):
    """Raised when a group archive cannot be built or unpacked."""

    pass

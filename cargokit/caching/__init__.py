"""
Cache group synchronization for CargoKit.

This package partitions cargo home into content-fingerprinted cache groups
and keeps them in sync with a shared remote blob store.

Modules:
    keys: Job identity and cache key derivation
    groups: Cache groups, fingerprints and group building
    access: Access time tracking and the lockfile-hash fallback
    policy: Minimum recache interval gate
    remote: Remote blob store backends
    archive: Group blob packing and unpacking
    coordinator: Race-aware upload protocol
    sync: Restore and save of a whole cargo home
"""

from .access import (
    AccessTimeTracking,
    LockfileHashFallback,
    TrackingMode,
    TrackingStrategy,
    select_strategy,
    supports_atime,
)
from .coordinator import (
    UploadCoordinator,
    UploadOutcome,
    UploadResult,
)
from .groups import (
    CacheGroup,
    CacheGroupBuilder,
    GroupMember,
)
from .keys import (
    CrossPlatformSharing,
    JobIdentity,
    KeyDeriver,
)
from .policy import (
    RecacheDecision,
    RecachePolicy,
)
from .remote import (
    GroupVersion,
    HttpRemoteStore,
    LocalDirectoryStore,
    RemoteStore,
    create_store,
)
from .sync import (
    CargoHomeCache,
    RestoreReport,
    SaveReport,
)

__all__ = [
    "AccessTimeTracking",
    "LockfileHashFallback",
    "TrackingMode",
    "TrackingStrategy",
    "select_strategy",
    "supports_atime",
    "UploadCoordinator",
    "UploadOutcome",
    "UploadResult",
    "CacheGroup",
    "CacheGroupBuilder",
    "GroupMember",
    "CrossPlatformSharing",
    "JobIdentity",
    "KeyDeriver",
    "RecacheDecision",
    "RecachePolicy",
    "GroupVersion",
    "HttpRemoteStore",
    "LocalDirectoryStore",
    "RemoteStore",
    "create_store",
    "CargoHomeCache",
    "RestoreReport",
    "SaveReport",
]

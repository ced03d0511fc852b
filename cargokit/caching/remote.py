"""
Remote blob store boundary.

The remote store is the only shared mutable resource between jobs. It is
accessed as whole-object get/put; there are no partial updates and no
compare-and-swap. Each cache group namespace holds immutable blobs keyed
by fingerprint plus one small ``head`` record naming the current version,
which doubles as the recache ledger entry for the group.

Two backends are provided:

- ``LocalDirectoryStore``: a directory shared between jobs (network mount,
  runner-local cache volume). Writes are atomic (temp file + rename).
- ``HttpRemoteStore``: any HTTP server accepting whole-object GET/PUT,
  authenticated with an optional bearer token.

Usage:
    from cargokit.caching.remote import create_store

    store = create_store(config.store)
    version = store.current_version(namespace)
"""

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote

import requests
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

from cargokit.caching.keys import HEAD_SUFFIX
from cargokit.core.exceptions import (
    ConfigError,
    RemoteDownloadError,
    RemoteQueryError,
    RemoteUploadError,
)
from cargokit.core.filesystem import atomic_write
from cargokit.core.locking import LockTimeout, path_lock

logger = logging.getLogger(__name__)

# Job usage entries older than this no longer protect items from pruning
USER_ENTRY_TTL = timedelta(days=30)
# Jobs renew their own entry once it is older than this
USER_ENTRY_REFRESH = USER_ENTRY_TTL / 2


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================================
# Version Records
# ============================================================================


@dataclass
class GroupVersion:
    """
    Current version of one cache group, as published in its head record.

    Attributes:
        fingerprint: Fingerprint of the published blob
        blob_key: Key the blob is stored under
        uploaded_at: Time of the accepted upload (recache ledger entry)
        uploaded_by: Digest of the uploading job
        users: Per-job usage, ``{job_digest: {"updated": iso, "items": [...]}}``
    """

    fingerprint: str
    blob_key: str
    uploaded_at: datetime
    uploaded_by: str = ""
    users: Dict[str, dict] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "blob_key": self.blob_key,
            "uploaded_at": format_timestamp(self.uploaded_at),
            "uploaded_by": self.uploaded_by,
            "users": self.users,
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True).encode("utf-8")

    @staticmethod
    def from_json(blob: bytes) -> "GroupVersion":
        """
        Decode a head record.

        Raises:
            ValueError: If the record is malformed
        """
        try:
            data = json.loads(blob.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed version record: {e}") from e
        return GroupVersion.from_dict(data)

    @staticmethod
    def from_dict(data: dict) -> "GroupVersion":
        """
        Build a version from its dict form.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        try:
            return GroupVersion(
                fingerprint=data["fingerprint"],
                blob_key=data["blob_key"],
                uploaded_at=parse_timestamp(data["uploaded_at"]),
                uploaded_by=data.get("uploaded_by", ""),
                users=dict(data.get("users") or {}),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed version record: {e}") from e

    def active_users(self, now: datetime) -> Dict[str, List[str]]:
        """Item identifiers used per job, ignoring expired entries."""
        active = {}
        for job, entry in self.users.items():
            try:
                updated = parse_timestamp(entry["updated"])
                items = [str(item) for item in entry.get("items", [])]
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.debug(f"Ignoring malformed usage entry for job {job}")
                continue
            if now - updated <= USER_ENTRY_TTL:
                active[job] = items
        return active


# ============================================================================
# Store Interface
# ============================================================================


class RemoteStore(ABC):
    """
    Abstract whole-object key-value blob store.

    Implementations raise RemoteUploadError / RemoteDownloadError for
    transport failures. A rejected put is not an error: it returns False.
    """

    @abstractmethod
    def put(self, key: str, blob: bytes) -> bool:
        """
        Store a blob under key.

        Returns:
            True if the store accepted the blob, False if it rejected it

        Raises:
            RemoteUploadError: If the upload failed
        """
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """
        Fetch the blob stored under key.

        Returns:
            Blob bytes, or None if absent

        Raises:
            RemoteDownloadError: If the download failed
        """
        pass

    def head_key(self, namespace: str) -> str:
        return f"{namespace}/{HEAD_SUFFIX}"

    def current_version(self, namespace: str) -> Optional[GroupVersion]:
        """
        Query the current version of a group without fetching its blob.

        A malformed head record is reported and treated as absent so the
        next upload replaces it.

        Raises:
            RemoteQueryError: If the query failed
        """
        key = self.head_key(namespace)
        try:
            blob = self.get(key)
        except RemoteDownloadError as e:
            raise RemoteQueryError(key, e.reason) from e

        if blob is None:
            return None
        try:
            return GroupVersion.from_json(blob)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable version record '{key}': {e}")
            return None

    def publish_version(self, namespace: str, version: GroupVersion) -> bool:
        """
        Publish a new head record for a group.

        Raises:
            RemoteUploadError: If the upload failed
        """
        return self.put(self.head_key(namespace), version.to_json())


# ============================================================================
# Shared Directory Backend
# ============================================================================


class LocalDirectoryStore(RemoteStore):
    """
    Store backed by a shared directory.

    Object files are named by the SHA-256 of their key, so keys never map
    onto arbitrary paths.

    Attributes:
        root: Store directory
        lock_timeout: Seconds to wait for the write lock of one object
    """

    def __init__(self, root: Path, lock_timeout: float = 30):
        self.root = Path(root)
        self.lock_timeout = lock_timeout

    def _object_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / "objects" / digest[:2] / digest

    def _lock_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / "locks" / f"{digest}.lock"

    def put(self, key: str, blob: bytes) -> bool:
        path = self._object_path(key)
        try:
            with path_lock(self._lock_path(key), timeout=self.lock_timeout):
                atomic_write(path, blob)
        except LockTimeout as e:
            raise RemoteUploadError(key, f"lock timeout: {e}") from e
        except OSError as e:
            raise RemoteUploadError(key, str(e)) from e
        logger.debug(f"Stored {len(blob)} bytes under '{key}'")
        return True

    def get(self, key: str) -> Optional[bytes]:
        path = self._object_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RemoteDownloadError(key, str(e)) from e

    def __repr__(self) -> str:
        return f"LocalDirectoryStore({self.root})"


# ============================================================================
# HTTP Backend
# ============================================================================


class HttpRemoteStore(RemoteStore):
    """
    Store backed by an HTTP server with whole-object GET/PUT.

    ``GET <base>/<key>`` returns 200 with the blob or 404 if absent.
    ``PUT <base>/<key>`` returns 2xx on acceptance; 409 and 412 are treated
    as rejections.

    Attributes:
        base_url: Server base URL
        token: Optional bearer token
        timeout: Per-request timeout in seconds
        max_retries: Attempts per request for transport failures
    """

    REJECTED_STATUS = (409, 412)

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30,
        max_retries: int = 3,
    ):
        if not base_url:
            raise ConfigError("HTTP store requires a base URL")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max(1, max_retries)

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{quote(key, safe='/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, key: str, **kwargs) -> requests.Response:
        for attempt in range(self.max_retries):
            try:
                return requests.request(
                    method,
                    self._url(key),
                    headers=self._headers(),
                    timeout=self.timeout,
                    **kwargs,
                )
            except (Timeout, ConnectionError) as e:
                if attempt == self.max_retries - 1:
                    raise
                backoff_seconds = 2**attempt
                logger.warning(
                    f"{method} '{key}' attempt {attempt + 1} failed: {e}. "
                    f"Retrying in {backoff_seconds}s..."
                )
                time.sleep(backoff_seconds)
        raise RequestException(f"{method} '{key}' failed for unknown reason")

    def put(self, key: str, blob: bytes) -> bool:
        try:
            response = self._request("PUT", key, data=blob)
            if response.status_code in self.REJECTED_STATUS:
                logger.info(f"Store rejected '{key}' (HTTP {response.status_code})")
                return False
            response.raise_for_status()
        except (Timeout, ConnectionError, HTTPError, RequestException) as e:
            raise RemoteUploadError(key, str(e)) from e
        logger.debug(f"Uploaded {len(blob)} bytes to '{key}'")
        return True

    def get(self, key: str) -> Optional[bytes]:
        try:
            response = self._request("GET", key)
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except (Timeout, ConnectionError, HTTPError, RequestException) as e:
            raise RemoteDownloadError(key, str(e)) from e
        return response.content

    def __repr__(self) -> str:
        return f"HttpRemoteStore({self.base_url})"


def create_store(store_config) -> RemoteStore:
    """
    Build a store from a StoreConfig.

    Raises:
        ConfigError: If the store type is unknown or incomplete
    """
    if store_config.type == "local":
        if not store_config.path:
            raise ConfigError("Local store requires 'path'")
        return LocalDirectoryStore(Path(store_config.path).expanduser())
    if store_config.type == "http":
        return HttpRemoteStore(
            store_config.url,
            token=store_config.token,
            timeout=store_config.timeout,
        )
    raise ConfigError(f"Unknown store type: '{store_config.type}'")


__all__ = [
    "USER_ENTRY_TTL",
    "USER_ENTRY_REFRESH",
    "GroupVersion",
    "RemoteStore",
    "LocalDirectoryStore",
    "HttpRemoteStore",
    "create_store",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
]

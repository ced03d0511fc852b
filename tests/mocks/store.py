"""
In-memory remote store for testing.
"""

from typing import Dict, List, Optional, Set

from cargokit.caching.remote import RemoteStore
from cargokit.core.exceptions import RemoteDownloadError, RemoteUploadError


class InMemoryStore(RemoteStore):
    """
    Remote store keeping objects in a dict.

    Records every accepted put and can be told to fail or reject requests.

    Attributes:
        objects: Stored blobs keyed by store key
        puts: Keys of accepted puts, in order
        gets: Keys requested, in order
        fail_puts: Raise RemoteUploadError on every put
        fail_gets: Raise RemoteDownloadError on every get
        reject_keys: Keys whose puts are rejected (put returns False)
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.puts: List[str] = []
        self.gets: List[str] = []
        self.fail_puts = False
        self.fail_gets = False
        self.reject_keys: Set[str] = set()

    def put(self, key: str, blob: bytes) -> bool:
        if self.fail_puts:
            raise RemoteUploadError(key, "simulated upload failure")
        if key in self.reject_keys:
            return False
        self.objects[key] = bytes(blob)
        self.puts.append(key)
        return True

    def get(self, key: str) -> Optional[bytes]:
        self.gets.append(key)
        if self.fail_gets:
            raise RemoteDownloadError(key, "simulated download failure")
        return self.objects.get(key)

    def head_keys(self) -> List[str]:
        return sorted(key for key in self.objects if key.endswith("/head"))

    @property
    def put_count(self) -> int:
        return len(self.puts)

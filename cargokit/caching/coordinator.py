"""
Race-aware upload coordinator.

Narrows the window in which two concurrent jobs both upload a new version
of the same cache group. The store offers no compare-and-swap, so the
protocol is:

1. Compare the local fingerprint against F_start, the version that was
   current when this job restored. Equal means nothing to upload.
2. Ask the recache policy whether a changed group may be re-uploaded yet.
3. Pack the group, then re-query the current version F_latest. If it is
   no longer F_start another job got there first; abort without sending
   anything. A failed re-query is treated the same way.
4. Upload the blob, then publish the head record pointing at it. Readers
   never see a head for a blob that is not fully stored.

When nothing is uploaded the head is still republished, blob untouched,
if this job's usage entry is missing, outdated or close to expiring.
Other jobs only keep items alive while their entries are current.

Upload failures are reported but never fatal; the job keeps its local copy.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from cargokit.caching.archive import pack_group
from cargokit.caching.groups import CacheGroup
from cargokit.caching.keys import JobIdentity, KeyDeriver
from cargokit.caching.policy import RecacheDecision, RecachePolicy
from cargokit.caching.remote import (
    USER_ENTRY_REFRESH,
    GroupVersion,
    RemoteStore,
    format_timestamp,
    parse_timestamp,
)
from cargokit.core.exceptions import ArchiveError, RemoteQueryError, RemoteUploadError

logger = logging.getLogger(__name__)


class UploadOutcome(Enum):
    UPLOADED = "uploaded"
    UNCHANGED = "unchanged"
    SKIPPED_POLICY = "skipped-by-policy"
    ABORTED_RACE = "aborted-race"
    FAILED = "failed"


@dataclass
class UploadResult:
    """
    Result of synchronizing one group.

    Attributes:
        group: Group as built locally
        outcome: What the coordinator did
        version: Published version (UPLOADED only)
        reason: Human-readable detail for non-upload outcomes
        usage_renewed: Head republished to renew this job's usage entry
    """

    group: CacheGroup
    outcome: UploadOutcome
    version: Optional[GroupVersion] = None
    reason: str = ""
    usage_renewed: bool = False


class UploadCoordinator:
    """
    Runs the re-query-then-upload protocol for cache groups.

    Attributes:
        store: Remote blob store
        key_deriver: Key composition for this job
        cargo_home: Cargo home the groups were built from
        job: Identity of the uploading job
    """

    def __init__(
        self,
        store: RemoteStore,
        key_deriver: KeyDeriver,
        cargo_home: Path,
        job: JobIdentity,
    ):
        self.store = store
        self.key_deriver = key_deriver
        self.cargo_home = Path(cargo_home)
        self.job = job

    def sync(
        self,
        group: CacheGroup,
        start_version: Optional[GroupVersion],
        policy: RecachePolicy,
        now: datetime,
        used_items: Iterable[str] = (),
    ) -> UploadResult:
        """
        Upload a group if it changed, the policy allows it and no other
        job has published a newer version since this job started.

        Args:
            group: Group as built locally (F_local)
            start_version: Version current at restore time (F_start), or None
            policy: Recache policy
            now: Current time
            used_items: Identifiers this job used, recorded in the head

        Returns:
            UploadResult
        """
        namespace = self.key_deriver.group_namespace(group.category, group.name)
        start_fingerprint = start_version.fingerprint if start_version else None
        used = sorted(set(used_items))

        if group.fingerprint == start_fingerprint:
            logger.info(f"{group.name} unchanged, no need to write to cache")
            return UploadResult(
                group,
                UploadOutcome.UNCHANGED,
                usage_renewed=self._renew_usage(namespace, start_version, used, now),
            )

        last_upload = start_version.uploaded_at if start_version else None
        if policy.decide(group.category, last_upload, now) is RecacheDecision.SKIP:
            return UploadResult(
                group,
                UploadOutcome.SKIPPED_POLICY,
                reason="minimum recache interval",
                usage_renewed=self._renew_usage(namespace, start_version, used, now),
            )

        try:
            blob = pack_group(self.cargo_home, group)
        except ArchiveError as e:
            logger.error(f"Failed to save {group.name} to cache: {e}")
            return UploadResult(group, UploadOutcome.FAILED, reason=str(e))

        try:
            latest = self.store.current_version(namespace)
        except RemoteQueryError as e:
            logger.warning(
                f"Could not re-query {group.name} before upload ({e}); "
                "assuming another job updated it"
            )
            return UploadResult(group, UploadOutcome.ABORTED_RACE, reason=str(e))

        latest_fingerprint = latest.fingerprint if latest else None
        if latest_fingerprint != start_fingerprint:
            logger.info(
                f"{group.name} was updated by another job since this job started "
                f"({start_fingerprint} -> {latest_fingerprint}); not uploading"
            )
            return UploadResult(
                group, UploadOutcome.ABORTED_RACE, reason="newer version published"
            )

        version = GroupVersion(
            fingerprint=group.fingerprint,
            blob_key=self.key_deriver.blob_key(
                group.category, group.name, group.fingerprint
            ),
            uploaded_at=now,
            uploaded_by=self.job.digest(),
            users=self._merge_users(latest, used, now),
        )

        try:
            if not self.store.put(version.blob_key, blob):
                raise RemoteUploadError(version.blob_key, "rejected by store")
            if not self.store.publish_version(namespace, version):
                head_key = self.store.head_key(namespace)
                raise RemoteUploadError(head_key, "rejected by store")
        except RemoteUploadError as e:
            logger.error(f"Failed to save {group.name} to cache: {e}")
            return UploadResult(group, UploadOutcome.FAILED, reason=str(e))

        logger.info(f"Saved {group.category.friendly_name} group {group.name} to cache")
        return UploadResult(group, UploadOutcome.UPLOADED, version=version)

    def _usage_is_current(
        self, version: GroupVersion, used: List[str], now: datetime
    ) -> bool:
        entry = version.users.get(self.job.digest())
        if not isinstance(entry, dict) or entry.get("items") != used:
            return False
        try:
            updated = parse_timestamp(entry["updated"])
        except (KeyError, TypeError, ValueError):
            return False
        return now - updated < USER_ENTRY_REFRESH

    def _renew_usage(
        self,
        namespace: str,
        start_version: Optional[GroupVersion],
        used: List[str],
        now: datetime,
    ) -> bool:
        """
        Republish the head with this job's usage entry renewed.

        The blob, fingerprint and recache ledger timestamp stay as
        published. Nothing is written unless the head is still the one
        this job started from.

        Returns:
            True if a renewed head was published
        """
        if start_version is None or not used:
            return False
        if self._usage_is_current(start_version, used, now):
            return False

        try:
            latest = self.store.current_version(namespace)
        except RemoteQueryError as e:
            logger.warning(f"Could not re-query {namespace} to renew usage: {e}")
            return False
        if latest is None or latest.fingerprint != start_version.fingerprint:
            logger.debug(f"{namespace} changed since this job started; usage not renewed")
            return False

        renewed = replace(latest, users=self._merge_users(latest, used, now))
        try:
            accepted = self.store.publish_version(namespace, renewed)
        except RemoteUploadError as e:
            logger.warning(f"Failed to renew usage of {namespace}: {e}")
            return False
        if not accepted:
            logger.warning(f"Store rejected renewed head for {namespace}")
            return False

        logger.info(f"Renewed usage of {len(used)} item(s) in {namespace}")
        return True

    def _merge_users(
        self,
        latest: Optional[GroupVersion],
        used_items: Iterable[str],
        now: datetime,
    ) -> dict:
        users = {}
        if latest is not None:
            for job in latest.active_users(now):
                users[job] = latest.users[job]
        users[self.job.digest()] = {
            "updated": format_timestamp(now),
            "items": sorted(set(used_items)),
        }
        return users


__all__ = [
    "UploadOutcome",
    "UploadResult",
    "UploadCoordinator",
]

"""
Cargo home restore and save.

``CargoHomeCache.restore`` runs at the start of a job: it reads the job's
dependency record, fetches the current version of every group the job used
last time, verifies each blob against its fingerprint and moves it into
cargo home. ``CargoHomeCache.save`` runs at the end: it rescans cargo home,
prunes unused members, and hands every group to the upload coordinator.

Both steps hold the cargo home lock for their whole duration. Remote
failures never fail the job: restore degrades to a cache miss and save
keeps the local, unshared copy.

Example:
    >>> cache = CargoHomeCache(config, store, cargo_home, project_root, work_dir, job)
    >>> cache.restore()
    >>> # ... build ...
    >>> report = cache.save()
    >>> print(report.summary())
"""

import json
import logging
import shutil
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Set, Tuple

from cargokit.cargo.home import Category, category_root
from cargokit.cargo.lockfiles import discover_lockfiles, read_lockfiles
from cargokit.cargo.scanner import DependencyScanner
from cargokit.caching.access import (
    TrackingStrategy,
    select_strategy,
    strategy_from_name,
)
from cargokit.caching.archive import unpack_group
from cargokit.caching.coordinator import UploadCoordinator, UploadOutcome, UploadResult
from cargokit.caching.groups import (
    CacheGroup,
    CacheGroupBuilder,
    GroupMember,
    render_delta,
)
from cargokit.caching.keys import JobIdentity, KeyDeriver
from cargokit.caching.policy import RecachePolicy
from cargokit.caching.remote import (
    GroupVersion,
    RemoteStore,
    format_timestamp,
    utc_now,
)
from cargokit.core.directory import ensure_work_dir
from cargokit.core.exceptions import (
    ArchiveError,
    ConfigError,
    FingerprintMismatchError,
    RemoteDownloadError,
    RemoteQueryError,
    RemoteUploadError,
    StateError,
)
from cargokit.core.filesystem import safe_rmtree, temporary_directory
from cargokit.core.locking import LockManager
from cargokit.core.platform import PlatformInfo, detect_platform, parse_platform_string
from cargokit.core.state import GroupState, RunState, RunStateManager

if TYPE_CHECKING:
    from cargokit.config.parser import CacheConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Dependency Records
# ============================================================================


@dataclass
class RecordedGroup:
    """One group listed in a job's dependency record."""

    category: Category
    name: str
    items: List[str] = field(default_factory=list)


@dataclass
class DependencyRecord:
    """
    Groups a job used on its last save.

    Scoped by job identity so that jobs with different dependency sets
    never learn about (or evict) each other's groups.
    """

    job: str
    updated: str
    groups: List[RecordedGroup] = field(default_factory=list)

    def to_json(self) -> bytes:
        data = {
            "job": self.job,
            "updated": self.updated,
            "groups": [
                {"category": g.category.value, "name": g.name, "items": g.items}
                for g in self.groups
            ],
        }
        return json.dumps(data, indent=2, sort_keys=True).encode("utf-8")

    @staticmethod
    def from_json(blob: bytes) -> "DependencyRecord":
        """
        Decode a record.

        Raises:
            ValueError: If the record is malformed
        """
        try:
            data = json.loads(blob.decode("utf-8"))
            groups = [
                RecordedGroup(
                    category=Category.from_name(g["category"]),
                    name=g["name"],
                    items=list(g.get("items", [])),
                )
                for g in data.get("groups", [])
            ]
            return DependencyRecord(
                job=data["job"], updated=data["updated"], groups=groups
            )
        except (
            UnicodeDecodeError,
            json.JSONDecodeError,
            KeyError,
            TypeError,
            AttributeError,
            ConfigError,
        ) as e:
            raise ValueError(f"Malformed dependency record: {e}") from e


# ============================================================================
# Reports
# ============================================================================


@dataclass
class RestoreReport:
    """Outcome of a restore."""

    strategy: str
    restored: List[str] = field(default_factory=list)
    missed: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"Restored {len(self.restored)} group(s), "
            f"{len(self.missed)} cache miss(es) [{self.strategy}]"
        )


@dataclass
class SaveReport:
    """Outcome of a save, one result per group."""

    results: List[UploadResult] = field(default_factory=list)
    record_published: bool = False

    def count(self, outcome: UploadOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def summary(self) -> str:
        counts = Counter(r.outcome.value for r in self.results)
        parts = [f"{counts[o.value]} {o.value}" for o in UploadOutcome if counts[o.value]]
        renewed = sum(1 for r in self.results if r.usage_renewed)
        if renewed:
            parts.append(f"{renewed} usage renewed")
        return f"{len(self.results)} group(s): " + (", ".join(parts) or "nothing to do")


# ============================================================================
# Restore / Save
# ============================================================================


class CargoHomeCache:
    """
    Restores and saves the cacheable parts of a cargo home.

    Attributes:
        config: Cache configuration
        store: Remote blob store
        cargo_home: Cargo home directory
        project_root: Directory searched for Cargo.lock files
        work_dir: Per-run working directory
        job: Identity of the current job
        platform_info: Platform used for key derivation
    """

    def __init__(
        self,
        config: "CacheConfig",
        store: RemoteStore,
        cargo_home: Path,
        project_root: Path,
        work_dir: Path,
        job: JobIdentity,
        platform_info: Optional[PlatformInfo] = None,
    ):
        self.config = config
        self.store = store
        self.cargo_home = Path(cargo_home)
        self.project_root = Path(project_root)
        self.work_dir = ensure_work_dir(Path(work_dir))
        self.job = job
        if platform_info is None:
            if config.platform:
                platform_info = parse_platform_string(config.platform)
            else:
                platform_info = detect_platform()
        self.platform_info = platform_info
        self.lock_manager = LockManager(self.work_dir / "lock")
        self.state_manager = RunStateManager(self.work_dir)

    def _key_deriver(self, strategy: TrackingStrategy, lockfile_hash: str) -> KeyDeriver:
        return KeyDeriver(
            self.config.cross_platform_sharing,
            self.platform_info,
            strategy.key_modifier(lockfile_hash),
        )

    # ------------------------------------------------------------------ restore

    def restore(self) -> RestoreReport:
        """
        Restore every group recorded for this job into cargo home.

        Returns:
            RestoreReport

        Raises:
            LockTimeout: If another process holds the cargo home lock
        """
        self.lock_manager.cleanup_stale_locks()
        with self.lock_manager.cargo_home_lock(self.cargo_home):
            return self._restore()

    def _restore(self) -> RestoreReport:
        # A failed restore must not leave an earlier run's state for save
        self.state_manager.clear()
        started_at = time.time()
        strategy = select_strategy(
            self.config.tracking, self.platform_info, self.work_dir / "check-atime"
        )
        lockfiles = read_lockfiles(discover_lockfiles(self.project_root))
        lockfile_hash = lockfiles.content_hash()
        deriver = self._key_deriver(strategy, lockfile_hash)
        categories = self.config.cache_only

        state = RunState(
            cargo_home=str(self.cargo_home.resolve()),
            started_at=started_at,
            strategy=strategy.name,
            lockfile_hash=lockfile_hash,
            categories=[c.value for c in categories],
        )
        report = RestoreReport(strategy=strategy.name)

        for category in categories:
            root = category_root(self.cargo_home, category)
            if root.exists():
                logger.warning(
                    f"Cache restore will delete existing contents of {root}. "
                    "To avoid this warning, restore before anything populates cargo home."
                )
                safe_rmtree(root, require_prefix=self.cargo_home)
            root.mkdir(parents=True, exist_ok=True)

        record = self._read_record(deriver)
        if record is None:
            logger.info(f"No dependency record for job {self.job}; starting cold")
        else:
            for recorded in record.groups:
                if recorded.category not in categories:
                    continue
                namespace = deriver.group_namespace(recorded.category, recorded.name)
                group_state = self._restore_group(recorded, namespace, strategy)
                state.groups[namespace] = group_state
                label = f"{recorded.category.short_name}/{recorded.name}"
                if group_state.members or self._group_dir_exists(recorded):
                    report.restored.append(label)
                else:
                    report.missed.append(label)

        self.state_manager.save(state)
        logger.info(report.summary())
        return report

    def _group_dir_exists(self, recorded: RecordedGroup) -> bool:
        root = category_root(self.cargo_home, recorded.category)
        return (root / recorded.name).is_dir()

    def _read_record(self, deriver: KeyDeriver) -> Optional[DependencyRecord]:
        key = deriver.dependency_record_key(self.job)
        try:
            blob = self.store.get(key)
        except RemoteDownloadError as e:
            logger.warning(f"Could not fetch dependency record: {e}")
            return None
        if blob is None:
            return None
        try:
            return DependencyRecord.from_json(blob)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable dependency record '{key}': {e}")
            return None

    def _restore_group(
        self, recorded: RecordedGroup, namespace: str, strategy: TrackingStrategy
    ) -> GroupState:
        """
        Fetch, verify and move one group into place.

        The recorded start version is what save compares against:
        - transient download or query failures record no start version, so
          save will not overwrite a group it never saw
        - a missing or corrupt blob records the head anyway, so save can
          replace it
        """
        group_state = GroupState(
            category=recorded.category.value, name=recorded.name, namespace=namespace
        )
        friendly = f"{recorded.category.friendly_name} group {recorded.name}"

        try:
            version = self.store.current_version(namespace)
        except RemoteQueryError as e:
            logger.warning(f"Could not query {friendly}: {e}; proceeding without it")
            return group_state

        if version is None:
            logger.info(f"No existing cache entry for {friendly} found")
            return group_state

        try:
            blob = self.store.get(version.blob_key)
        except RemoteDownloadError as e:
            logger.warning(f"Could not download {friendly}: {e}; proceeding without it")
            return group_state

        group_state.start_version = version.to_dict()
        if blob is None:
            logger.warning(f"Blob for {friendly} is missing from the store")
            return group_state

        staging_root = self.work_dir / "staging"
        with temporary_directory(prefix="restore_", parent=staging_root) as staging:
            try:
                group = self._verify_staged(blob, staging, recorded, version)
            except (ArchiveError, FingerprintMismatchError) as e:
                logger.warning(f"Discarding cached {friendly}: {e}")
                return group_state

            staged_dir = category_root(staging, recorded.category) / recorded.name
            target = category_root(self.cargo_home, recorded.category) / recorded.name
            if target.exists():
                safe_rmtree(target, require_prefix=self.cargo_home)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(staged_dir), str(target))

        strategy.prepare_restored([target])
        group_state.members = [m.to_dict() for m in group.members]
        logger.info(f"Restored {friendly} ({len(group.members)} member(s))")
        return group_state

    def _verify_staged(
        self,
        blob: bytes,
        staging: Path,
        recorded: RecordedGroup,
        version: GroupVersion,
    ) -> CacheGroup:
        manifest = unpack_group(blob, staging)
        expected_name = (recorded.category.value, recorded.name)
        if (manifest["category"], manifest["name"]) != expected_name:
            raise ArchiveError(
                f"Archive holds {manifest['category']}/{manifest['name']}, "
                f"expected {recorded.category.value}/{recorded.name}"
            )

        scanner = DependencyScanner(staging, [recorded.category])
        items, group_names = scanner.scan_category(recorded.category)
        groups = CacheGroupBuilder(staging).build(
            items, {recorded.category: group_names}
        )
        group = groups.get(
            (recorded.category, recorded.name),
            CacheGroup(recorded.category, recorded.name),
        )

        for expected in (version.fingerprint, manifest["fingerprint"]):
            if group.fingerprint != expected:
                raise FingerprintMismatchError(recorded.name, expected, group.fingerprint)
        return group

    # --------------------------------------------------------------------- save

    def save(self, now: Optional[datetime] = None) -> SaveReport:
        """
        Prune, fingerprint and upload every group, then publish the
        dependency record.

        Args:
            now: Current time (defaults to the wall clock)

        Returns:
            SaveReport

        Raises:
            StateError: If restore did not run in this job or cargo home moved
            ScanIOError: If cargo home cannot be read
            LockTimeout: If another process holds the cargo home lock
        """
        state = self.state_manager.load()
        current = str(self.cargo_home.resolve())
        if state.cargo_home != current:
            raise StateError(
                f"Path to cache changed from {state.cargo_home} to {current}. "
                "Perhaps CARGO_HOME changed?"
            )

        with self.lock_manager.cargo_home_lock(self.cargo_home):
            return self._save(state, now or utc_now())

    def _save(self, state: RunState, now: datetime) -> SaveReport:
        strategy = strategy_from_name(state.strategy)
        deriver = self._key_deriver(strategy, state.lockfile_hash)
        categories = Category.parse_list(state.categories)
        policy = RecachePolicy.from_intervals(self.config.min_recache)
        coordinator = UploadCoordinator(self.store, deriver, self.cargo_home, self.job)
        own_digest = self.job.digest()

        scanner = DependencyScanner(self.cargo_home, categories)
        scan = scanner.scan(discover_lockfiles(self.project_root))
        access = strategy.classify(scan.items, scan.lockfiles, state.started_at)
        built = CacheGroupBuilder(self.cargo_home).build_from_scan(scan)

        keys: Set[Tuple[Category, str]] = set(built)
        for group_state in state.groups.values():
            keys.add((Category.from_name(group_state.category), group_state.name))

        report = SaveReport()
        recorded: List[RecordedGroup] = []

        for category, name in sorted(keys, key=lambda k: (k[0].value, k[1])):
            namespace = deriver.group_namespace(category, name)
            group_state = state.groups.get(namespace)
            start_version = None
            restored = CacheGroup(category, name)
            if group_state is not None:
                if group_state.start_version:
                    start_version = GroupVersion.from_dict(group_state.start_version)
                restored = CacheGroup(
                    category,
                    name,
                    tuple(GroupMember.from_dict(m) for m in group_state.members),
                )

            scanned = built.get((category, name), CacheGroup(category, name))
            group = self._rebuild_group(
                restored,
                scanned,
                access.candidates_in(category),
                start_version,
                own_digest,
                now,
            )

            if group.is_empty and not restored.is_empty:
                logger.info(
                    f"Every member of {category.friendly_name} group {name} was pruned; "
                    "leaving the cached copy as is"
                )
                report.results.append(
                    UploadResult(
                        group, UploadOutcome.UNCHANGED, reason="all members pruned"
                    )
                )
                continue

            used = sorted(access.used_in(category) & group.identifiers)
            result = coordinator.sync(group, start_version, policy, now, used)
            if result.outcome is UploadOutcome.UPLOADED:
                delta = group.changes_from(restored)
                if delta:
                    logger.info(render_delta(delta))
            report.results.append(result)
            recorded.append(RecordedGroup(category, name, used))

        report.record_published = self._publish_record(deriver, recorded, now)
        logger.info(report.summary())
        return report

    def _rebuild_group(
        self,
        restored: CacheGroup,
        scanned: CacheGroup,
        candidates: Set[str],
        start_version: Optional[GroupVersion],
        own_digest: str,
        now: datetime,
    ) -> CacheGroup:
        """
        Merge scanned content into the restored group, then prune.

        Members gone from disk are always dropped. Prune candidates are
        dropped unless another job recorded using them.
        """
        group = restored.merge(scanned.members)

        missing = group.identifiers - scanned.identifiers
        if missing:
            logger.info(
                f"{len(missing)} member(s) of {group.name} no longer on disk: "
                f"{', '.join(sorted(missing))}"
            )
            group = group.prune(missing)

        protected: Set[str] = set()
        if start_version is not None:
            for job, items in start_version.active_users(now).items():
                if job != own_digest:
                    protected.update(items)

        prune = (candidates & group.identifiers) - protected
        if prune:
            logger.info(
                f"Pruning {len(prune)} unused member(s) from {group.name}: "
                f"{', '.join(sorted(prune))}"
            )
            group = group.prune(prune)
        return group

    def _publish_record(
        self, deriver: KeyDeriver, groups: List[RecordedGroup], now: datetime
    ) -> bool:
        record = DependencyRecord(
            job=str(self.job), updated=format_timestamp(now), groups=groups
        )
        key = deriver.dependency_record_key(self.job)
        try:
            accepted = self.store.put(key, record.to_json())
        except RemoteUploadError as e:
            logger.error(f"Failed to save dependency record: {e}")
            return False
        if not accepted:
            logger.warning(f"Store rejected dependency record '{key}'")
        return accepted


__all__ = [
    "RecordedGroup",
    "DependencyRecord",
    "RestoreReport",
    "SaveReport",
    "CargoHomeCache",
]

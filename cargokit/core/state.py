"""
Run state handed from the restore step to the save step of one job.

Restore records what it found remotely (the start version of every group,
which carries F_start and the recache ledger entry) and what it put on
disk. Save reads it back to decide what changed. State is persisted to
``<work_dir>/state.json`` with atomic writes.

Example:
    >>> manager = RunStateManager(work_dir)
    >>> state = RunState(cargo_home=str(cargo_home), started_at=time.time())
    >>> manager.save(state)
    >>> manager.load().cargo_home
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from cargokit.core.exceptions import StateError
from cargokit.core.filesystem import atomic_write

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class GroupState:
    """
    Restore-time view of one cache group.

    Attributes:
        category: Category name
        name: Group name
        namespace: Remote key namespace of the group
        start_version: Head record current at restore time, or None
        members: Members restored onto disk (GroupMember dicts)
    """

    category: str
    name: str
    namespace: str
    start_version: Optional[dict] = None
    members: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "name": self.name,
            "namespace": self.namespace,
            "start_version": self.start_version,
            "members": self.members,
        }

    @staticmethod
    def from_dict(data: dict) -> "GroupState":
        return GroupState(
            category=data["category"],
            name=data["name"],
            namespace=data["namespace"],
            start_version=data.get("start_version"),
            members=list(data.get("members", [])),
        )


@dataclass
class RunState:
    """
    State of one job run.

    Attributes:
        version: State file format version
        cargo_home: Cargo home restored into
        started_at: Restore time in seconds since the epoch (start of the
            access time retention window)
        strategy: Name of the selected tracking strategy
        lockfile_hash: Hash of all lockfiles at restore time
        categories: Cached category names
        groups: Restored groups keyed by namespace
    """

    version: int = STATE_VERSION
    cargo_home: str = ""
    started_at: float = 0.0
    strategy: str = ""
    lockfile_hash: str = ""
    categories: List[str] = field(default_factory=list)
    groups: Dict[str, GroupState] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "cargo_home": self.cargo_home,
            "started_at": self.started_at,
            "strategy": self.strategy,
            "lockfile_hash": self.lockfile_hash,
            "categories": self.categories,
            "groups": {ns: group.to_dict() for ns, group in self.groups.items()},
        }


class RunStateManager:
    """
    Persists RunState in the per-run working directory.

    Attributes:
        work_dir: Run working directory
        state_file: Path to state.json
    """

    def __init__(self, work_dir: Path):
        self.work_dir = Path(work_dir)
        self.state_file = self.work_dir / "state.json"

    def exists(self) -> bool:
        return self.state_file.exists()

    def load(self) -> RunState:
        """
        Load the state written by restore.

        Raises:
            StateError: If no state exists or it cannot be read
        """
        if not self.exists():
            raise StateError(
                f"No run state found at {self.state_file}. "
                "Run 'cargokit restore' earlier in the same job."
            )

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            if data.get("version", STATE_VERSION) != STATE_VERSION:
                raise StateError(
                    f"Run state version {data.get('version')} not supported"
                )

            groups = {
                ns: GroupState.from_dict(group)
                for ns, group in data.get("groups", {}).items()
            }
            state = RunState(
                version=data.get("version", STATE_VERSION),
                cargo_home=data["cargo_home"],
                started_at=float(data["started_at"]),
                strategy=data["strategy"],
                lockfile_hash=data.get("lockfile_hash", ""),
                categories=list(data.get("categories", [])),
                groups=groups,
            )
        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            raise StateError(f"Invalid run state file {self.state_file}: {e}") from e

        logger.debug(f"Loaded run state from {self.state_file}")
        return state

    def save(self, state: RunState) -> None:
        """Save state atomically."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(self.state_file, json.dumps(state.to_dict(), indent=2))
        logger.debug(f"Saved run state to {self.state_file}")

    def clear(self) -> None:
        self.state_file.unlink(missing_ok=True)


__all__ = [
    "STATE_VERSION",
    "GroupState",
    "RunState",
    "RunStateManager",
]

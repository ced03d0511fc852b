"""
Job identity and cache key derivation.

Two kinds of derived values live here:

- ``JobIdentity``: a stable per-job identifier built from the workflow name,
  job id and build-matrix coordinates. It scopes dependency-tracking
  records only, never cache content.
- Cache keys: strings composed from the cross-platform sharing mode,
  category, group name and fingerprint. Everything here is pure: identical
  inputs always produce identical keys.

Key layout::

    cargokit/v1/<category>/<group>/<scope>            group namespace
    cargokit/v1/<category>/<group>/<scope>/head       current version record
    cargokit/v1/<category>/<group>/<scope>/<fp>       group blob
    cargokit/v1/jobs/<scope>/<job-digest>             dependency record

``<scope>`` is a short hash over the platform material, category, group
name and optional key modifier, so one category/group never shares a key
space with another.
"""

import base64
import hashlib
import json
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from cargokit.cargo.home import Category
from cargokit.core.exceptions import ConfigError
from cargokit.core.platform import PlatformInfo


KEY_PREFIX = "cargokit/v1"
HEAD_SUFFIX = "head"
SCOPE_HASH_BYTES = 9

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class CrossPlatformSharing(Enum):
    """How far cache entries are shared between operating systems."""

    ALL = "all"
    UNIX_LIKE = "unix-like"
    NONE = "none"

    @classmethod
    def from_name(cls, name: str) -> "CrossPlatformSharing":
        for mode in cls:
            if mode.value == name:
                return mode
        valid = ", ".join(m.value for m in cls)
        raise ConfigError(
            f"Invalid cross-platform-sharing: '{name}' (expected one of {valid})"
        )

    def platform_material(self, platform_info: PlatformInfo) -> str:
        """
        Platform component of key material under this sharing mode.

        Example:
            >>> CrossPlatformSharing.UNIX_LIKE.platform_material(PlatformInfo('macos', 'arm64'))
            'unix'
        """
        if self is CrossPlatformSharing.ALL:
            return "any"
        if self is CrossPlatformSharing.UNIX_LIKE:
            return "unix" if platform_info.is_unix_like else platform_info.os
        return platform_info.platform_string()


def _short_hash(*parts: str) -> str:
    hasher = hashlib.sha256()
    for part in parts:
        encoded = part.encode("utf-8")
        # Length prefix keeps ("ab", "c") distinct from ("a", "bc")
        hasher.update(len(encoded).to_bytes(8, "little"))
        hasher.update(encoded)
    digest = hasher.digest()[:SCOPE_HASH_BYTES]
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def sanitize_key_component(value: str) -> str:
    """Replace characters that are unsafe in store keys and URLs."""
    return _UNSAFE_KEY_CHARS.sub("_", value) or "_"


@dataclass(frozen=True)
class JobIdentity:
    """
    Stable identity of one logical CI job.

    Stable across retries of the same job, distinct across matrix cells.

    Attributes:
        workflow: Workflow name
        job_id: Job identifier within the workflow
        matrix: Matrix coordinates as sorted (name, JSON value) pairs
    """

    workflow: str
    job_id: str
    matrix: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def create(
        cls, workflow: str, job_id: str, matrix: Optional[Mapping[str, Any]] = None
    ) -> "JobIdentity":
        """
        Build an identity, canonicalizing matrix values to JSON strings.

        Example:
            >>> JobIdentity.create("CI", "test", {"os": "ubuntu-latest"}).matrix
            (('os', '"ubuntu-latest"'),)
        """
        pairs = tuple(
            sorted(
                (str(name), json.dumps(value, sort_keys=True, separators=(",", ":")))
                for name, value in (matrix or {}).items()
            )
        )
        return cls(workflow=workflow, job_id=job_id, matrix=pairs)

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        matrix_json: Optional[str] = None,
    ) -> "JobIdentity":
        """
        Derive the identity from CI environment variables.

        Reads ``GITHUB_WORKFLOW`` and ``GITHUB_JOB``; matrix coordinates come
        from ``matrix_json`` or ``CARGOKIT_MATRIX``. Missing values fall back
        to fixed placeholders so local runs still get a stable identity.

        Raises:
            ConfigError: If the matrix is not a JSON object (or null)
        """
        env = os.environ if env is None else env
        workflow = env.get("GITHUB_WORKFLOW", "local")
        job_id = env.get("GITHUB_JOB", "local")
        raw_matrix = matrix_json
        if raw_matrix is None:
            raw_matrix = env.get("CARGOKIT_MATRIX")

        matrix: Dict[str, Any] = {}
        if raw_matrix:
            try:
                parsed = json.loads(raw_matrix)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Matrix is not valid JSON: {e}") from e
            if parsed is not None and not isinstance(parsed, dict):
                raise ConfigError("Matrix must be a JSON object")
            matrix = parsed or {}

        return cls.create(workflow, job_id, matrix)

    def digest(self) -> str:
        """Short URL-safe digest used in record keys."""
        canonical = json.dumps(
            {"workflow": self.workflow, "job": self.job_id, "matrix": list(self.matrix)},
            sort_keys=True,
            separators=(",", ":"),
        )
        return _short_hash(canonical)

    def __str__(self) -> str:
        if not self.matrix:
            return f"{self.workflow}/{self.job_id}"
        coords = ", ".join(f"{name}={value}" for name, value in self.matrix)
        return f"{self.workflow}/{self.job_id} ({coords})"


class KeyDeriver:
    """
    Composes remote store keys.

    Attributes:
        sharing: Cross-platform sharing mode
        platform_info: Platform the job runs on (or declares)
        key_modifier: Extra key material (the lockfile hash under the
            lockfile-hash fallback), or None
    """

    def __init__(
        self,
        sharing: CrossPlatformSharing,
        platform_info: PlatformInfo,
        key_modifier: Optional[str] = None,
    ):
        self.sharing = sharing
        self.platform_info = platform_info
        self.key_modifier = key_modifier

    @property
    def platform_material(self) -> str:
        return self.sharing.platform_material(self.platform_info)

    def _scope(self, *parts: str) -> str:
        return _short_hash(self.platform_material, self.key_modifier or "", *parts)

    def group_namespace(self, category: Category, group_name: str) -> str:
        """Key prefix shared by every version of one group."""
        scope = self._scope(category.value, group_name)
        group = sanitize_key_component(group_name)
        return f"{KEY_PREFIX}/{category.value}/{group}/{scope}"

    def head_key(self, namespace: str) -> str:
        """Key of the small record naming a group's current version."""
        return f"{namespace}/{HEAD_SUFFIX}"

    def blob_key(self, category: Category, group_name: str, fingerprint: str) -> str:
        """Key of one immutable group blob."""
        namespace = self.group_namespace(category, group_name)
        return f"{namespace}/{sanitize_key_component(fingerprint)}"

    def dependency_record_key(self, job: JobIdentity) -> str:
        """Key of the job-scoped record listing the groups a job uses."""
        scope = self._scope("jobs")
        return f"{KEY_PREFIX}/jobs/{scope}/{job.digest()}"


__all__ = [
    "KEY_PREFIX",
    "CrossPlatformSharing",
    "JobIdentity",
    "KeyDeriver",
    "sanitize_key_component",
]

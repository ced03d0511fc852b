"""
Cache group archives.

A group blob is a gzip tarball holding every member path relative to cargo
home plus a JSON manifest recording the group's category, name, members
and fingerprint. Restore extracts into a staging directory first so that
content is verified before anything touches cargo home.
"""

import io
import json
import logging
import tarfile
from pathlib import Path
from typing import Dict

from cargokit.cargo.home import category_root
from cargokit.caching.groups import CacheGroup
from cargokit.core.exceptions import ArchiveError
from cargokit.core.filesystem import Ignores

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".cargokit-manifest.json"


def _group_dir(group: CacheGroup) -> str:
    return f"{group.category.relative_path.as_posix()}/{group.name}"


def build_manifest(group: CacheGroup) -> Dict:
    return {
        "category": group.category.value,
        "name": group.name,
        "group_dir": _group_dir(group),
        "fingerprint": group.fingerprint,
        "members": [member.to_dict() for member in group.members],
    }


def _ignore_filter(root_arcname: str, ignores: Ignores):
    prefix = f"{root_arcname}/"

    def _filter(info: tarfile.TarInfo):
        if not info.name.startswith(prefix):
            return info
        parts = info.name[len(prefix):].split("/")
        if ignores.should_ignore(parts[-1], len(parts)):
            return None
        return info

    return _filter


def pack_group(cargo_home: Path, group: CacheGroup) -> bytes:
    """
    Pack a group's members into a blob.

    Args:
        cargo_home: Cargo home the member paths are relative to
        group: Group to pack

    Returns:
        Gzip-compressed tar bytes

    Raises:
        ArchiveError: If a member cannot be read
    """
    cargo_home = Path(cargo_home)
    ignores = group.category.item_ignores()
    buffer = io.BytesIO()

    try:
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            group_dir = category_root(cargo_home, group.category) / group.name
            if group_dir.is_dir() and group.category.aggregates_members:
                tar.add(group_dir, arcname=_group_dir(group), recursive=False)

            for member in group.members:
                tar.add(
                    cargo_home / member.relative_path,
                    arcname=member.relative_path,
                    filter=_ignore_filter(member.relative_path, ignores),
                )

            manifest = json.dumps(build_manifest(group), indent=2).encode("utf-8")
            info = tarfile.TarInfo(MANIFEST_NAME)
            info.size = len(manifest)
            tar.addfile(info, io.BytesIO(manifest))
    except OSError as e:
        raise ArchiveError(f"Failed to pack group '{group.name}': {e}") from e

    blob = buffer.getvalue()
    logger.debug(
        f"Packed {len(group.members)} member(s) of '{group.name}' into {len(blob)} bytes"
    )
    return blob


def _validate_member_path(name: str, destination: Path) -> None:
    target = (destination / name).resolve()
    if not target.is_relative_to(destination.resolve()):
        raise ArchiveError(
            f"Archive member '{name}' attempts directory traversal; extraction blocked"
        )


def _validate_link(member: tarfile.TarInfo, destination: Path) -> None:
    """Reject symlinks and hard links whose targets leave the destination."""
    if Path(member.linkname).is_absolute():
        raise ArchiveError(
            f"Archive link '{member.name}' points to absolute path '{member.linkname}'"
        )
    if member.issym():
        target = (Path(member.name).parent / member.linkname).as_posix()
    else:
        target = member.linkname
    try:
        _validate_member_path(target, destination)
    except ArchiveError as e:
        raise ArchiveError(
            f"Archive link '{member.name}' points outside the archive: {member.linkname}"
        ) from e


def unpack_group(blob: bytes, destination: Path) -> Dict:
    """
    Extract a blob into a staging directory.

    Args:
        blob: Blob produced by :func:`pack_group`
        destination: Empty staging directory

    Returns:
        The decoded manifest

    Raises:
        ArchiveError: If the blob is corrupt, unsafe or has no manifest
    """
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                _validate_member_path(member.name, destination)
                if member.issym() or member.islnk():
                    _validate_link(member, destination)

            if hasattr(tarfile, "data_filter"):
                tar.extractall(destination, filter="data")
            else:
                tar.extractall(destination)
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ArchiveError(f"Failed to unpack group archive: {e}") from e

    manifest_path = destination / MANIFEST_NAME
    try:
        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        manifest_path.unlink()
    except (OSError, json.JSONDecodeError) as e:
        raise ArchiveError(f"Group archive has no readable manifest: {e}") from e

    for key in ("category", "name", "group_dir", "fingerprint", "members"):
        if key not in manifest:
            raise ArchiveError(f"Group archive manifest is missing '{key}'")

    _validate_member_path(manifest["group_dir"], destination)
    for member in manifest["members"]:
        _validate_member_path(member.get("relative_path", ""), destination)

    group_dir = destination / manifest["group_dir"]
    group_dir.mkdir(parents=True, exist_ok=True)
    return manifest


__all__ = [
    "MANIFEST_NAME",
    "build_manifest",
    "pack_group",
    "unpack_group",
]

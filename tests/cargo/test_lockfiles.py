"""
Tests for Cargo.lock discovery, parsing and hashing.
"""

import hashlib
import pytest

from cargokit.cargo.lockfiles import (
    LockfileSet,
    discover_lockfiles,
    parse_lockfile_packages,
    read_lockfiles,
)
from cargokit.core.exceptions import LockfileReadError
from tests.utils.builders import write_lockfile


class TestDiscoverLockfiles:
    """Tests for discover_lockfiles."""

    def test_finds_nested_and_skips_build_dirs(self, project_root):
        root_lock = write_lockfile(project_root, [])
        member_lock = write_lockfile(project_root / "crates" / "member", [])
        write_lockfile(project_root / "target" / "package" / "x", [])
        write_lockfile(project_root / ".git" / "modules", [])

        found = discover_lockfiles(project_root)

        assert found == sorted([root_lock, member_lock], key=str)

    def test_missing_root(self, tmp_path):
        assert discover_lockfiles(tmp_path / "missing") == []


class TestParseLockfilePackages:
    """Tests for parse_lockfile_packages."""

    def test_registry_packages_only(self, tmp_path):
        content = b"""
version = 3

[[package]]
name = "serde"
version = "1.0.200"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "local-crate"
version = "0.1.0"

[[package]]
name = "tokio"
version = "1.37.0"
source = "git+https://github.com/tokio-rs/tokio#abc123"

[[package]]
name = "anyhow"
version = "1.0.80"
source = "sparse+https://index.crates.io/"
"""
        crates = parse_lockfile_packages(content, tmp_path / "Cargo.lock")
        assert crates == frozenset({"serde-1.0.200", "anyhow-1.0.80"})

    def test_malformed(self, tmp_path):
        with pytest.raises(LockfileReadError):
            parse_lockfile_packages(b"[[package]\nname=", tmp_path / "Cargo.lock")

    def test_no_packages(self, tmp_path):
        assert parse_lockfile_packages(b"version = 3\n", tmp_path / "Cargo.lock") == frozenset()

    @pytest.mark.parametrize(
        "entry",
        [
            'name = "serde"\nversion = "1.0.0"\nsource = 1',
            'name = ["serde"]\nversion = "1.0.0"',
            'name = "serde"\nversion = 1.0',
        ],
    )
    def test_non_string_fields(self, tmp_path, entry):
        content = f"version = 3\n\n[[package]]\n{entry}\n".encode()
        with pytest.raises(LockfileReadError, match="non-string"):
            parse_lockfile_packages(content, tmp_path / "Cargo.lock")


class TestReadLockfiles:
    """Tests for read_lockfiles and content hashing."""

    def test_malformed_lockfile_still_hashed(self, project_root):
        """Test that a malformed lockfile is reported but contributes its bytes."""
        good = write_lockfile(project_root / "a", [("serde", "1.0.200")])
        bad = project_root / "b" / "Cargo.lock"
        bad.parent.mkdir()
        bad.write_text("not = [valid")

        result = read_lockfiles([good, bad])

        assert result.num_files == 2
        assert result.referenced_crates == frozenset({"serde-1.0.200"})
        assert len(result.errors) == 1

    def test_wrong_field_type_reported(self, project_root):
        """Test that a package field of the wrong type is reported, not raised."""
        good = write_lockfile(project_root / "a", [("serde", "1.0.200")])
        bad = project_root / "b" / "Cargo.lock"
        bad.parent.mkdir()
        bad.write_text(
            'version = 3\n\n[[package]]\nname = "x"\nversion = "1.0.0"\nsource = 1\n'
        )

        result = read_lockfiles([good, bad])

        assert result.num_files == 2
        assert result.referenced_crates == frozenset({"serde-1.0.200"})
        assert len(result.errors) == 1
        assert "non-string 'source'" in str(result.errors[0])

    def test_unreadable_lockfile_skipped(self, project_root):
        result = read_lockfiles([project_root / "missing" / "Cargo.lock"])
        assert result.num_files == 0
        assert len(result.errors) == 1

    def test_hash_independent_of_input_order(self, project_root):
        first = write_lockfile(project_root / "a", [("serde", "1.0.200")])
        second = write_lockfile(project_root / "b", [("anyhow", "1.0.80")])

        assert (
            read_lockfiles([first, second]).content_hash()
            == read_lockfiles([second, first]).content_hash()
        )

    def test_hash_changes_with_content(self, project_root):
        path = write_lockfile(project_root, [("serde", "1.0.200")])
        before = read_lockfiles([path]).content_hash()
        write_lockfile(project_root, [("serde", "1.0.201")])
        assert read_lockfiles([path]).content_hash() != before

    def test_empty_hash(self):
        assert LockfileSet().content_hash() == hashlib.sha256().hexdigest()

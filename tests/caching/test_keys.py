"""
Tests for job identity and cache key derivation.
"""

import pytest

from cargokit.caching.keys import (
    KEY_PREFIX,
    CrossPlatformSharing,
    JobIdentity,
    KeyDeriver,
    sanitize_key_component,
)
from cargokit.cargo.home import Category
from cargokit.core.exceptions import ConfigError
from cargokit.core.platform import PlatformInfo

LINUX = PlatformInfo("linux", "x64")
MACOS = PlatformInfo("macos", "arm64")
WINDOWS = PlatformInfo("windows", "x64")


class TestJobIdentity:
    """Tests for JobIdentity."""

    def test_matrix_order_irrelevant(self):
        first = JobIdentity.create("CI", "test", {"os": "linux", "rust": "stable"})
        second = JobIdentity.create("CI", "test", {"rust": "stable", "os": "linux"})
        assert first == second
        assert first.digest() == second.digest()

    def test_matrix_cells_distinct(self):
        first = JobIdentity.create("CI", "test", {"os": "linux"})
        second = JobIdentity.create("CI", "test", {"os": "windows"})
        assert first.digest() != second.digest()

    def test_from_env(self):
        env = {
            "GITHUB_WORKFLOW": "CI",
            "GITHUB_JOB": "build",
            "CARGOKIT_MATRIX": '{"os": "ubuntu-latest"}',
        }
        identity = JobIdentity.from_env(env)
        assert identity == JobIdentity.create("CI", "build", {"os": "ubuntu-latest"})

    def test_explicit_matrix_wins(self):
        env = {"CARGOKIT_MATRIX": '{"os": "a"}'}
        identity = JobIdentity.from_env(env, matrix_json='{"os": "b"}')
        assert identity.matrix == (("os", '"b"'),)

    def test_local_defaults(self):
        identity = JobIdentity.from_env({})
        assert str(identity) == "local/local"

    def test_null_matrix(self):
        assert JobIdentity.from_env({"CARGOKIT_MATRIX": "null"}).matrix == ()

    @pytest.mark.parametrize("raw", ["{bad", "[1, 2]"])
    def test_invalid_matrix(self, raw):
        with pytest.raises(ConfigError):
            JobIdentity.from_env({}, matrix_json=raw)

    def test_str_includes_coordinates(self):
        identity = JobIdentity.create("CI", "test", {"os": "linux"})
        assert str(identity) == 'CI/test (os="linux")'


class TestCrossPlatformSharing:
    """Tests for sharing modes."""

    def test_from_name(self):
        assert CrossPlatformSharing.from_name("unix-like") is CrossPlatformSharing.UNIX_LIKE

    def test_invalid_name(self):
        with pytest.raises(ConfigError, match="cross-platform-sharing"):
            CrossPlatformSharing.from_name("some")

    def test_platform_material(self):
        assert CrossPlatformSharing.ALL.platform_material(WINDOWS) == "any"
        assert CrossPlatformSharing.UNIX_LIKE.platform_material(MACOS) == "unix"
        assert CrossPlatformSharing.UNIX_LIKE.platform_material(WINDOWS) == "windows"
        assert CrossPlatformSharing.NONE.platform_material(LINUX) == "linux-x64"


class TestKeyDeriver:
    """Tests for KeyDeriver."""

    def test_deterministic(self):
        first = KeyDeriver(CrossPlatformSharing.NONE, LINUX)
        second = KeyDeriver(CrossPlatformSharing.NONE, LINUX)
        assert first.group_namespace(Category.INDEX, "reg") == second.group_namespace(
            Category.INDEX, "reg"
        )

    def test_none_differs_across_platforms(self):
        linux = KeyDeriver(CrossPlatformSharing.NONE, LINUX)
        windows = KeyDeriver(CrossPlatformSharing.NONE, WINDOWS)
        assert linux.group_namespace(Category.CRATE_FILE, "reg") != windows.group_namespace(
            Category.CRATE_FILE, "reg"
        )

    def test_all_identical_across_platforms(self):
        linux = KeyDeriver(CrossPlatformSharing.ALL, LINUX)
        windows = KeyDeriver(CrossPlatformSharing.ALL, WINDOWS)
        assert linux.group_namespace(Category.CRATE_FILE, "reg") == windows.group_namespace(
            Category.CRATE_FILE, "reg"
        )
        assert linux.blob_key(Category.CRATE_FILE, "reg", "ff") == windows.blob_key(
            Category.CRATE_FILE, "reg", "ff"
        )

    def test_unix_like_shares_linux_and_macos(self):
        linux = KeyDeriver(CrossPlatformSharing.UNIX_LIKE, LINUX)
        macos = KeyDeriver(CrossPlatformSharing.UNIX_LIKE, MACOS)
        windows = KeyDeriver(CrossPlatformSharing.UNIX_LIKE, WINDOWS)
        assert linux.group_namespace(Category.INDEX, "r") == macos.group_namespace(
            Category.INDEX, "r"
        )
        assert linux.group_namespace(Category.INDEX, "r") != windows.group_namespace(
            Category.INDEX, "r"
        )

    def test_categories_and_groups_isolated(self):
        deriver = KeyDeriver(CrossPlatformSharing.NONE, LINUX)
        keys = {
            deriver.group_namespace(Category.INDEX, "reg"),
            deriver.group_namespace(Category.CRATE_FILE, "reg"),
            deriver.group_namespace(Category.CRATE_FILE, "other"),
        }
        assert len(keys) == 3

    def test_key_modifier_changes_keys(self):
        plain = KeyDeriver(CrossPlatformSharing.NONE, LINUX)
        modified = KeyDeriver(CrossPlatformSharing.NONE, LINUX, key_modifier="abc")
        assert plain.group_namespace(Category.INDEX, "reg") != modified.group_namespace(
            Category.INDEX, "reg"
        )

    def test_key_layout(self):
        deriver = KeyDeriver(CrossPlatformSharing.NONE, LINUX)
        namespace = deriver.group_namespace(Category.GIT_REPO, "tokio-abc")

        assert namespace.startswith(f"{KEY_PREFIX}/git-repos/tokio-abc/")
        assert deriver.head_key(namespace) == f"{namespace}/head"
        assert deriver.blob_key(Category.GIT_REPO, "tokio-abc", "ff00") == f"{namespace}/ff00"

    def test_dependency_record_key_scoped_by_job(self, job):
        deriver = KeyDeriver(CrossPlatformSharing.NONE, LINUX)
        other = JobIdentity.create("CI", "lint")
        assert deriver.dependency_record_key(job) != deriver.dependency_record_key(other)
        assert deriver.dependency_record_key(job).startswith(f"{KEY_PREFIX}/jobs/")

    def test_sanitize(self):
        assert sanitize_key_component("a b/c?") == "a_b_c_"
        assert sanitize_key_component("") == "_"

"""
Tests for cargokit.yaml parsing and command-line overrides.
"""

import pytest
from datetime import timedelta

from cargokit.caching.access import TrackingMode
from cargokit.caching.keys import CrossPlatformSharing
from cargokit.cargo.home import Category
from cargokit.config.parser import (
    CacheConfig,
    apply_overrides,
    load_config,
    parse_cache_only,
    parse_config,
    parse_duration,
)
from cargokit.core.exceptions import ConfigError


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1d", timedelta(days=1)),
            ("36h", timedelta(hours=36)),
            ("2h 30m", timedelta(hours=2, minutes=30)),
            ("1m30s", timedelta(seconds=90)),
            ("5min", timedelta(minutes=5)),
            ("1w", timedelta(weeks=1)),
            ("90", timedelta(seconds=90)),
            (0, timedelta(0)),
            (3600, timedelta(hours=1)),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "abc", "5x", "1d garbage", -1, True, 1.5, None])
    def test_invalid(self, value):
        with pytest.raises(ConfigError):
            parse_duration(value)


class TestParseCacheOnly:
    """Tests for parse_cache_only."""

    def test_string(self):
        assert parse_cache_only("crates indices") == [Category.INDEX, Category.CRATE_FILE]

    def test_list(self):
        assert parse_cache_only(["git-repos"]) == [Category.GIT_REPO]

    def test_unknown_category(self):
        with pytest.raises(ConfigError, match="Unknown cache category"):
            parse_cache_only("crates registries")

    def test_empty(self):
        with pytest.raises(ConfigError, match="at least one"):
            parse_cache_only("")


class TestParseConfig:
    """Tests for parse_config."""

    def test_full_config(self, tmp_path):
        path = tmp_path / "cargokit.yaml"
        path.write_text(
            """
cache:
  cache-only: indices crates
  min-recache-indices: 2d
  min-recache-crates: 1h
  cross-platform-sharing: unix-like
  tracking: lockfile-hash
  platform: linux-arm64
  store:
    type: http
    url: https://cache.example.com
    timeout: 10
"""
        )

        config = parse_config(path)

        assert config.cache_only == [Category.INDEX, Category.CRATE_FILE]
        assert config.min_recache_interval(Category.INDEX) == timedelta(days=2)
        assert config.min_recache_interval(Category.CRATE_FILE) == timedelta(hours=1)
        assert config.min_recache_interval(Category.GIT_REPO) == timedelta(0)
        assert config.cross_platform_sharing is CrossPlatformSharing.UNIX_LIKE
        assert config.tracking is TrackingMode.LOCKFILE_HASH
        assert config.platform == "linux-arm64"
        assert config.store.type == "http"
        assert config.store.url == "https://cache.example.com"
        assert config.store.timeout == 10.0

    def test_defaults(self, tmp_path):
        path = tmp_path / "cargokit.yaml"
        path.write_text("cache:\n")

        config = parse_config(path)

        assert config.cache_only == list(Category)
        assert config.min_recache_interval(Category.INDEX) == timedelta(days=1)
        assert config.cross_platform_sharing is CrossPlatformSharing.NONE
        assert config.tracking is TrackingMode.AUTO
        assert config.store.type == "local"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "cargokit.yaml"
        path.write_text("")
        assert parse_config(path) == CacheConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            parse_config(tmp_path / "cargokit.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "cargokit.yaml"
        path.write_text("cache: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            parse_config(path)

    @pytest.mark.parametrize(
        "content,match",
        [
            ("- a\n- b\n", "mapping"),
            ("cache: 5\n", "'cache' must be a mapping"),
            ("cache:\n  tracking: sometimes\n", "tracking mode"),
            ("cache:\n  cross-platform-sharing: most\n", "cross-platform-sharing"),
            ("cache:\n  store:\n    type: s3\n", "Invalid store type"),
            ("cache:\n  store:\n    timeout: soon\n", "Invalid store timeout"),
            ("cache:\n  min-recache-crates: often\n", "Invalid duration"),
        ],
    )
    def test_invalid_values(self, tmp_path, content, match):
        path = tmp_path / "cargokit.yaml"
        path.write_text(content)
        with pytest.raises(ConfigError, match=match):
            parse_config(path)


class TestLoadConfig:
    """Tests for load_config."""

    def test_project_root_file(self, project_root):
        (project_root / "cargokit.yaml").write_text("cache:\n  tracking: access-time\n")
        assert load_config(project_root=project_root).tracking is TrackingMode.ACCESS_TIME

    def test_no_file_gives_defaults(self, project_root):
        assert load_config(project_root=project_root) == CacheConfig()

    def test_explicit_path_must_exist(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.yaml")


class TestApplyOverrides:
    """Tests for apply_overrides."""

    def test_overrides(self):
        base = CacheConfig()
        config = apply_overrides(
            base,
            {
                "cache-only": "crates",
                "min-recache-indices": "12h",
                "cross-platform-sharing": "all",
                "tracking": "access-time",
                "platform": "windows-x64",
                "store-path": "/mnt/cache",
                "min-recache-crates": None,
            },
        )

        assert config.cache_only == [Category.CRATE_FILE]
        assert config.min_recache_interval(Category.INDEX) == timedelta(hours=12)
        assert config.cross_platform_sharing is CrossPlatformSharing.ALL
        assert config.tracking is TrackingMode.ACCESS_TIME
        assert config.platform == "windows-x64"
        assert config.store.type == "local"
        assert config.store.path == "/mnt/cache"
        # Original untouched
        assert base.min_recache == {}
        assert base.store.path is None

    def test_store_url_switches_to_http(self):
        config = apply_overrides(
            CacheConfig(), {"store-url": "https://c.example.com", "store-token": "t"}
        )
        assert config.store.type == "http"
        assert config.store.token == "t"

    def test_unknown_option(self):
        with pytest.raises(ConfigError, match="Unknown configuration option"):
            apply_overrides(CacheConfig(), {"compression": "zstd"})

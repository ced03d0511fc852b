"""
Tests for platform detection and platform strings.
"""

import pytest
from unittest.mock import patch

from cargokit.core.exceptions import ConfigError
from cargokit.core.platform import (
    PlatformInfo,
    clear_platform_cache,
    detect_platform,
    parse_platform_string,
)


class TestPlatformInfo:
    """Tests for PlatformInfo."""

    def test_platform_string(self):
        assert PlatformInfo("linux", "x64").platform_string() == "linux-x64"
        assert str(PlatformInfo("macos", "arm64")) == "macos-arm64"

    def test_os_families(self):
        """Test Windows and Unix-like classification."""
        assert PlatformInfo("windows", "x64").is_windows
        assert not PlatformInfo("windows", "x64").is_unix_like
        assert PlatformInfo("linux", "x64").is_unix_like
        assert PlatformInfo("macos", "arm64").is_unix_like


class TestParsePlatformString:
    """Tests for parse_platform_string."""

    def test_valid(self):
        assert parse_platform_string("Windows-x64") == PlatformInfo("windows", "x64")

    @pytest.mark.parametrize("value", ["linux", "-x64", "linux-", ""])
    def test_invalid(self, value):
        with pytest.raises(ConfigError, match="Invalid platform string"):
            parse_platform_string(value)


class TestDetectPlatform:
    """Tests for detect_platform with mocked platform module."""

    def setup_method(self):
        clear_platform_cache()

    def teardown_method(self):
        clear_platform_cache()

    @pytest.mark.parametrize(
        "system,machine,expected",
        [
            ("Linux", "x86_64", PlatformInfo("linux", "x64")),
            ("Darwin", "arm64", PlatformInfo("macos", "arm64")),
            ("Windows", "AMD64", PlatformInfo("windows", "x64")),
            ("Linux", "aarch64", PlatformInfo("linux", "arm64")),
            ("FreeBSD", "i386", PlatformInfo("freebsd", "x86")),
        ],
    )
    def test_detection(self, system, machine, expected):
        with patch("platform.system", return_value=system), patch(
            "platform.machine", return_value=machine
        ), patch("platform.platform", return_value=f"{system}-generic"):
            assert detect_platform() == expected

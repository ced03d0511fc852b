"""
Platform detection for CargoKit.

Cache keys may or may not be shared between operating systems depending on
the configured cross-platform sharing mode, so the key deriver needs a
canonical description of the platform a job runs on.

Usage:
    from cargokit.core.platform import detect_platform

    platform_info = detect_platform()
    print(f"Platform string: {platform_info.platform_string()}")
"""

import functools
import platform
from dataclasses import dataclass

from cargokit.core.exceptions import ConfigError

UNIX_LIKE_OS = ("linux", "macos", "freebsd", "netbsd", "openbsd", "android", "ios")


@dataclass(frozen=True)
class PlatformInfo:
    """
    Platform a job runs on (or declares itself to run on).

    Attributes:
        os: Operating system ('windows', 'linux', 'macos', ...)
        arch: CPU architecture ('x64', 'arm64', 'x86', 'arm', ...)
    """

    os: str
    arch: str

    def platform_string(self) -> str:
        """
        Get canonical platform string (e.g., 'linux-x64', 'macos-arm64').

        Example:
            >>> PlatformInfo('linux', 'x64').platform_string()
            'linux-x64'
        """
        return f"{self.os}-{self.arch}"

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def is_unix_like(self) -> bool:
        return self.os in UNIX_LIKE_OS

    def __str__(self) -> str:
        return self.platform_string()


def parse_platform_string(value: str) -> PlatformInfo:
    """
    Parse a canonical platform string such as 'windows-x64'.

    Args:
        value: Platform string in ``<os>-<arch>`` form

    Returns:
        PlatformInfo for the string

    Raises:
        ConfigError: If the string is malformed
    """
    os_name, sep, arch = value.strip().lower().partition("-")
    if not sep or not os_name or not arch:
        raise ConfigError(
            f"Invalid platform string: '{value}' (expected '<os>-<arch>', e.g. 'linux-x64')"
        )
    return PlatformInfo(os=os_name, arch=arch)


@functools.lru_cache(maxsize=1)
def detect_platform() -> PlatformInfo:
    """
    Detect current platform information.

    This function is cached - it only runs detection once per process.

    Returns:
        PlatformInfo instance with detected platform information
    """
    return PlatformInfo(os=_detect_os(), arch=_detect_architecture())


def _detect_os() -> str:
    """
    Detect operating system.

    Returns:
        Normalized OS name: 'windows', 'linux', 'macos', or the lowercased
        ``platform.system()`` value for anything else
    """
    system = platform.system().lower()

    if system == "windows":
        return "windows"
    elif system == "linux":
        if "android" in platform.platform().lower():
            return "android"
        return "linux"
    elif system == "darwin":
        return "macos"
    else:
        return system or "unknown"


def _detect_architecture() -> str:
    """
    Detect CPU architecture.

    Returns:
        Normalized architecture: 'x64', 'arm64', 'x86', 'arm'
    """
    machine = platform.machine().lower()

    if machine in ("x86_64", "amd64", "x64"):
        return "x64"
    elif machine in ("aarch64", "arm64"):
        return "arm64"
    elif machine in ("i386", "i686", "x86"):
        return "x86"
    elif machine.startswith("arm"):
        return "arm"
    else:
        return machine or "unknown"


def clear_platform_cache():
    """
    Clear the platform detection cache.

    This forces the next call to detect_platform() to re-detect.
    """
    detect_platform.cache_clear()


__all__ = [
    "PlatformInfo",
    "parse_platform_string",
    "detect_platform",
    "clear_platform_cache",
]

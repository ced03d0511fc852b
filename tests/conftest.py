"""
Pytest configuration and shared fixtures for CargoKit tests.
"""

import os
import pytest
from pathlib import Path

from cargokit.caching.keys import JobIdentity
from cargokit.core.platform import PlatformInfo
from tests.mocks.store import InMemoryStore
from tests.utils.builders import CargoHomeBuilder


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers",
        "requires_atime: marks tests that need a filesystem with settable access times",
    )


def pytest_collection_modifyitems(config, items):
    """Skip access time tests on Windows, which never tracks them."""
    if os.name != "nt":
        return
    skip_atime = pytest.mark.skip(reason="access times are not tracked on Windows")
    for item in items:
        if "requires_atime" in item.keywords:
            item.add_marker(skip_atime)


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def cargo_home(tmp_path) -> Path:
    """Create an empty cargo home."""
    home = tmp_path / "cargo-home"
    home.mkdir()
    return home


@pytest.fixture
def cargo_builder(cargo_home: Path) -> CargoHomeBuilder:
    """Builder populating the cargo_home fixture."""
    return CargoHomeBuilder(cargo_home)


@pytest.fixture
def project_root(tmp_path) -> Path:
    """Create an empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def work_dir(tmp_path) -> Path:
    """Per-run working directory."""
    return tmp_path / "work"


@pytest.fixture
def memory_store() -> InMemoryStore:
    """Fresh in-memory remote store."""
    return InMemoryStore()


@pytest.fixture
def linux_platform() -> PlatformInfo:
    return PlatformInfo(os="linux", arch="x64")


@pytest.fixture
def job() -> JobIdentity:
    return JobIdentity.create("CI", "test", {"os": "ubuntu-latest"})


@pytest.fixture
def isolated_env(tmp_path, monkeypatch) -> Path:
    """Isolate HOME and CI variables from the developer machine."""
    fake_home = tmp_path / "home"
    fake_home.mkdir()

    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setenv("USERPROFILE", str(fake_home))
    for name in (
        "CARGO_HOME",
        "RUNNER_TEMP",
        "GITHUB_WORKFLOW",
        "GITHUB_JOB",
        "CARGOKIT_MATRIX",
        "CARGOKIT_STORE_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)

    return fake_home

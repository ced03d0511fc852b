"""
Tests for the dependency scanner.
"""

import pytest

from cargokit.cargo.home import Category, category_root
from cargokit.cargo.scanner import DependencyScanner
from cargokit.core.exceptions import ScanIOError
from tests.utils.builders import write_lockfile

REG = "index.crates.io-6f17d22bba15001f"


class TestDependencyScanner:
    """Tests for DependencyScanner.scan."""

    def test_items_per_category(self, cargo_home, cargo_builder):
        """Test that each category yields items with the right group."""
        cargo_builder.with_index(files={"config.json": "{}", "se/rd/serde": "x"})
        cargo_builder.with_crate("serde", "1.0.200").with_crate("anyhow", "1.0.80")
        cargo_builder.with_git_repo("tokio-abc123")

        result = DependencyScanner(cargo_home, list(Category)).scan()

        identifiers = [(i.category, i.identifier) for i in result.items]
        assert identifiers == [
            (Category.CRATE_FILE, f"{REG}/anyhow-1.0.80"),
            (Category.CRATE_FILE, f"{REG}/serde-1.0.200"),
            (Category.GIT_REPO, "tokio-abc123"),
            (Category.INDEX, REG),
        ]
        assert all(item.group_name in (REG, "tokio-abc123") for item in result.items)
        assert result.group_names[Category.CRATE_FILE] == {REG}
        assert result.group_names[Category.GIT_REPO] == {"tokio-abc123"}

    def test_relative_paths_are_posix(self, cargo_home, cargo_builder):
        cargo_builder.with_crate("serde", "1.0.200")
        result = DependencyScanner(cargo_home, [Category.CRATE_FILE]).scan()
        assert result.items[0].relative_path == f"registry/cache/{REG}/serde-1.0.200.crate"

    def test_crate_name_version(self, cargo_home, cargo_builder):
        cargo_builder.with_crate("serde", "1.0.200").with_git_repo("repo")
        result = DependencyScanner(cargo_home, list(Category)).scan()

        by_category = {item.category: item for item in result.items}
        assert by_category[Category.CRATE_FILE].crate_name_version == "serde-1.0.200"
        assert by_category[Category.GIT_REPO].crate_name_version is None

    def test_index_ignores_last_updated(self, cargo_home, cargo_builder):
        """Test that the index timestamp file is not part of the item."""
        cargo_builder.with_index(files={".last-updated": "", "config.json": "{}"})
        result = DependencyScanner(cargo_home, [Category.INDEX]).scan()
        assert len(result.items[0].file_times) == 1

    def test_empty_index_still_a_group(self, cargo_home, cargo_builder):
        """Test that an empty index directory yields an item with no files."""
        cargo_builder.with_index(registry="reg-1")
        result = DependencyScanner(cargo_home, [Category.INDEX]).scan()

        assert result.group_names[Category.INDEX] == {"reg-1"}
        assert result.items[0].file_times == ()

    def test_non_crate_files_skipped(self, cargo_home, cargo_builder):
        cargo_builder.with_crate("serde", "1.0.200")
        crate_dir = category_root(cargo_home, Category.CRATE_FILE) / REG
        (crate_dir / "README").write_text("not a crate")

        result = DependencyScanner(cargo_home, [Category.CRATE_FILE]).scan()

        assert [i.identifier for i in result.items] == [f"{REG}/serde-1.0.200"]

    def test_empty_crate_group_reported(self, cargo_home):
        """Test that a crate registry dir with no archives is still a group."""
        (category_root(cargo_home, Category.CRATE_FILE) / "reg-2").mkdir(parents=True)
        result = DependencyScanner(cargo_home, [Category.CRATE_FILE]).scan()
        assert result.items == []
        assert result.group_names[Category.CRATE_FILE] == {"reg-2"}

    def test_missing_category_directories(self, cargo_home):
        result = DependencyScanner(cargo_home, list(Category)).scan()
        assert result.items == []
        assert all(names == set() for names in result.group_names.values())

    def test_missing_cargo_home(self, tmp_path):
        with pytest.raises(ScanIOError, match="not a directory"):
            DependencyScanner(tmp_path / "missing", list(Category)).scan()

    def test_reads_lockfiles(self, cargo_home, project_root):
        lockfile = write_lockfile(project_root, [("serde", "1.0.200")])
        result = DependencyScanner(cargo_home, list(Category)).scan([lockfile])
        assert result.lockfiles.referenced_crates == frozenset({"serde-1.0.200"})

    def test_scan_does_not_modify(self, cargo_home, cargo_builder):
        """Test that scanning leaves content and modification times alone."""
        cargo_builder.with_crate("serde", "1.0.200")
        crate = cargo_builder.crate_path("serde", "1.0.200")
        before = (crate.read_bytes(), crate.stat().st_mtime_ns)

        DependencyScanner(cargo_home, list(Category)).scan()

        assert (crate.read_bytes(), crate.stat().st_mtime_ns) == before

"""
Tests for the CLI argument parser and command dispatch.
"""

import pytest
from pathlib import Path
from unittest.mock import patch

from cargokit.cli.parser import CLI


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_creation(self):
        cli = CLI()
        assert cli.parser is not None

    def test_no_command_shows_help(self, capsys):
        """Test that running without command shows help."""
        result = CLI().run([])

        assert result == 1
        captured = capsys.readouterr()
        assert "usage:" in captured.out.lower()

    def test_version_flag(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            CLI().run(["--version"])

        assert exc_info.value.code == 0
        assert "CargoKit" in capsys.readouterr().out

    def test_unknown_command(self):
        with pytest.raises(SystemExit):
            CLI().parse_args(["prune"])


class TestCacheCommandParsing:
    """Test restore/save/key argument parsing."""

    def test_restore_defaults(self):
        args = CLI().parse_args(["restore"])

        assert args.command == "restore"
        assert args.cache_only is None
        assert args.tracking is None
        assert args.store_path is None

    def test_restore_options(self):
        args = CLI().parse_args(
            [
                "--cargo-home",
                "/tmp/cargo",
                "restore",
                "--cache-only",
                "crates indices",
                "--min-recache-indices",
                "2d",
                "--cross-platform-sharing",
                "unix-like",
                "--tracking",
                "access-time",
                "--store-path",
                "/mnt/cache",
            ]
        )

        assert args.cargo_home == Path("/tmp/cargo")
        assert args.cache_only == "crates indices"
        assert args.min_recache_indices == "2d"
        assert args.cross_platform_sharing == "unix-like"
        assert args.tracking == "access-time"
        assert args.store_path == "/mnt/cache"

    def test_invalid_choice(self):
        with pytest.raises(SystemExit):
            CLI().parse_args(["save", "--tracking", "sometimes"])

    def test_key_arguments(self):
        args = CLI().parse_args(["key", "crates", "reg", "--fingerprint", "ff"])
        assert (args.category, args.group, args.fingerprint) == ("crates", "reg", "ff")

    def test_store_token_from_env(self, monkeypatch):
        monkeypatch.setenv("CARGOKIT_STORE_TOKEN", "from-env")
        args = CLI().parse_args(["save"])
        assert args.store_token == "from-env"


class TestCommands:
    """Test running commands end to end through the CLI."""

    @pytest.fixture
    def base_args(self, isolated_env, tmp_path, cargo_home, project_root):
        return [
            "--project-root",
            str(project_root),
            "--cargo-home",
            str(cargo_home),
            "--work-dir",
            str(tmp_path / "work"),
        ]

    @pytest.fixture
    def store_args(self, tmp_path):
        return [
            "--store-path",
            str(tmp_path / "store"),
            "--tracking",
            "lockfile-hash",
            "--platform",
            "linux-x64",
        ]

    def test_restore_then_save(self, base_args, store_args, cargo_builder, capsys):
        assert CLI().run(base_args + ["restore"] + store_args) == 0
        assert "Restored 0 group(s)" in capsys.readouterr().out

        cargo_builder.with_crate("serde", "1.0.200")
        assert CLI().run(base_args + ["save"] + store_args) == 0
        assert "1 uploaded" in capsys.readouterr().out

    def test_save_without_restore_fails(self, base_args, store_args, capsys):
        assert CLI().run(base_args + ["save"] + store_args) == 1
        assert "ERROR: Save failed" in capsys.readouterr().err

    def test_restore_config_error(self, base_args, store_args, capsys):
        result = CLI().run(base_args + ["restore", "--cache-only", "bogus"] + store_args)
        assert result == 1
        assert "Unknown cache category" in capsys.readouterr().err

    def test_restore_without_store(self, base_args, capsys):
        assert CLI().run(base_args + ["restore"]) == 1
        assert "requires 'path'" in capsys.readouterr().err

    def test_config_file(self, base_args, project_root, tmp_path, capsys):
        (project_root / "cargokit.yaml").write_text(
            "cache:\n"
            "  tracking: lockfile-hash\n"
            "  platform: linux-x64\n"
            "  store:\n"
            f"    path: {(tmp_path / 'store').as_posix()}\n"
        )
        assert CLI().run(base_args + ["restore"]) == 0
        assert "[lockfile-hash]" in capsys.readouterr().out

    def test_key(self, base_args, capsys):
        result = CLI().run(
            base_args
            + ["key", "crates", "reg-1", "--fingerprint", "ff", "--platform", "linux-x64"]
        )

        out = capsys.readouterr().out
        assert result == 0
        assert "namespace: cargokit/v1/crates/reg-1/" in out
        assert "/head" in out
        assert "blob:" in out
        assert "record:    cargokit/v1/jobs/" in out

    @pytest.mark.parametrize(
        "supported,tracking", [(True, "access-time"), (False, "lockfile-hash")]
    )
    def test_key_auto_tracking_matches_restore(self, base_args, capsys, supported, tracking):
        """Test that auto tracking prints the keys of the strategy restore would pick."""
        key_args = ["key", "crates", "reg-1", "--platform", "linux-x64"]
        with patch("cargokit.caching.access.supports_atime", return_value=supported):
            assert CLI().run(base_args + key_args) == 0
        auto = capsys.readouterr().out

        assert CLI().run(base_args + key_args + ["--tracking", tracking]) == 0
        explicit = capsys.readouterr().out

        assert f"tracking:  {tracking}" in auto
        assert auto == explicit

    @pytest.mark.parametrize("supported,code", [(True, 0), (False, 1)])
    def test_check_atime(self, base_args, capsys, supported, code):
        with patch(
            "cargokit.cli.commands.check_atime.supports_atime", return_value=supported
        ):
            assert CLI().run(base_args + ["check-atime"]) == code
        assert "File access times" in capsys.readouterr().out

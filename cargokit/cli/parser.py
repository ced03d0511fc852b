"""
CargoKit CLI argument parser.

This module implements the command-line interface for CargoKit using argparse.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

# Get version from package
try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("cargokit")
except PackageNotFoundError:
    __version__ = "0.1.0"

logger = logging.getLogger(__name__)


class CLI:
    """CargoKit command-line interface."""

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="cargokit",
            description="CargoKit - shared Cargo dependency caching for CI",
            epilog='Use "cargokit COMMAND --help" for command-specific help',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        # Global options
        parser.add_argument(
            "--version", action="version", version=f"CargoKit {__version__}"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Enable minimal output (errors only)",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Path to configuration file (default: ./cargokit.yaml)",
        )
        parser.add_argument(
            "--project-root",
            type=Path,
            metavar="PATH",
            default=Path.cwd(),
            help="Directory searched for Cargo.lock files (default: current directory)",
        )
        parser.add_argument(
            "--cargo-home",
            type=Path,
            metavar="PATH",
            help="Cargo home to cache (default: $CARGO_HOME or ~/.cargo)",
        )
        parser.add_argument(
            "--work-dir",
            type=Path,
            metavar="PATH",
            help="Per-run working directory (default: $RUNNER_TEMP/cargokit)",
        )
        parser.add_argument(
            "--matrix",
            metavar="JSON",
            help="Build matrix coordinates as a JSON object (default: $CARGOKIT_MATRIX)",
        )

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command", help="Available commands", metavar="COMMAND"
        )

        cache_options = self._create_cache_options()
        self._add_restore_command(subparsers, cache_options)
        self._add_save_command(subparsers, cache_options)
        self._add_check_atime_command(subparsers)
        self._add_key_command(subparsers, cache_options)

        return parser

    def _create_cache_options(self) -> argparse.ArgumentParser:
        """Options overriding the cache section of cargokit.yaml."""
        options = argparse.ArgumentParser(add_help=False)
        group = options.add_argument_group("cache options")
        group.add_argument(
            "--cache-only",
            metavar="CATEGORIES",
            help="Whitespace-separated subset of: indices crates git-repos",
        )
        group.add_argument(
            "--min-recache-indices",
            metavar="DURATION",
            help="Minimum interval between index re-uploads (default: 1d)",
        )
        group.add_argument(
            "--min-recache-crates",
            metavar="DURATION",
            help="Minimum interval between crate file re-uploads (default: 0s)",
        )
        group.add_argument(
            "--min-recache-git-repos",
            metavar="DURATION",
            help="Minimum interval between Git repository re-uploads (default: 0s)",
        )
        group.add_argument(
            "--cross-platform-sharing",
            choices=["all", "unix-like", "none"],
            help="Share cache entries across operating systems (default: none)",
        )
        group.add_argument(
            "--tracking",
            choices=["auto", "access-time", "lockfile-hash"],
            help="Dependency usage tracking strategy (default: auto)",
        )
        group.add_argument(
            "--platform",
            metavar="OS-ARCH",
            help="Declared platform for cache keys (default: detected)",
        )
        group.add_argument(
            "--store-path",
            metavar="PATH",
            help="Use a shared directory as the remote store",
        )
        group.add_argument(
            "--store-url",
            metavar="URL",
            help="Use an HTTP server as the remote store",
        )
        group.add_argument(
            "--store-token",
            metavar="TOKEN",
            default=os.environ.get("CARGOKIT_STORE_TOKEN"),
            help="Bearer token for the HTTP store (default: $CARGOKIT_STORE_TOKEN)",
        )
        return options

    def _add_restore_command(self, subparsers, cache_options):
        """Add 'restore' subcommand."""
        subparsers.add_parser(
            "restore",
            parents=[cache_options],
            help="Restore cached dependency state into cargo home",
            description=(
                "Restore every cache group this job used last time into cargo home. "
                "Existing category directories are cleared first."
            ),
        )

    def _add_save_command(self, subparsers, cache_options):
        """Add 'save' subcommand."""
        subparsers.add_parser(
            "save",
            parents=[cache_options],
            help="Upload changed cache groups",
            description=(
                "Prune unused dependencies, then upload every changed cache group "
                "whose minimum recache interval has elapsed."
            ),
        )

    def _add_check_atime_command(self, subparsers):
        """Add 'check-atime' subcommand."""
        subparsers.add_parser(
            "check-atime",
            help="Check whether the filesystem supports access time tracking",
        )

    def _add_key_command(self, subparsers, cache_options):
        """Add 'key' subcommand."""
        parser = subparsers.add_parser(
            "key",
            parents=[cache_options],
            help="Print the store keys of a cache group",
        )
        parser.add_argument(
            "category",
            choices=["indices", "crates", "git-repos"],
            help="Cache category",
        )
        parser.add_argument("group", help="Group name (registry or repository directory)")
        parser.add_argument(
            "--fingerprint", metavar="HEX", help="Also print the blob key for this fingerprint"
        )

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse command-line arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with given arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        parsed_args = self.parse_args(args)

        # Configure logging
        self._configure_logging(parsed_args)

        # Check if command specified
        if not parsed_args.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130  # Standard exit code for SIGINT
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return 1

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            force=True,  # Reconfigure if already configured
        )

    def _dispatch_command(self, args) -> int:
        """
        Dispatch to appropriate command handler.

        Args:
            args: Parsed arguments with command field

        Returns:
            Exit code from command handler
        """
        # Command module mapping
        command_map = {
            "restore": "cargokit.cli.commands.restore",
            "save": "cargokit.cli.commands.save",
            "check-atime": "cargokit.cli.commands.check_atime",
            "key": "cargokit.cli.commands.key",
        }

        module_name = command_map.get(args.command)
        if not module_name:
            logger.error(f"Unknown command: {args.command}")
            return 1

        try:
            # Dynamic import of command module
            import importlib

            module = importlib.import_module(module_name)

            # Call run() function in module
            if not hasattr(module, "run"):
                logger.error(f"Command module {module_name} has no run() function")
                return 1

            return module.run(args)

        except ImportError as e:
            logger.error(f"Failed to load command module: {e}")
            if args.verbose:
                import traceback

                traceback.print_exc()
            return 1


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()

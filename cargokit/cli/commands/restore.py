"""
Restore command implementation.

Restores the cache groups this job used last time into cargo home.
"""

import logging

from cargokit.cli.utils import build_cargo_cache, print_error
from cargokit.core.exceptions import CargoKitError
from cargokit.core.locking import LockTimeout

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the restore command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    logger.debug(f"Arguments: {args}")

    try:
        cache = build_cargo_cache(args)
        report = cache.restore()
    except LockTimeout as e:
        print_error("Cargo home is locked by another process", str(e))
        return 1
    except CargoKitError as e:
        print_error("Restore failed", str(e))
        return 1

    for label in report.missed:
        logger.debug(f"Cache miss: {label}")
    print(report.summary())
    return 0

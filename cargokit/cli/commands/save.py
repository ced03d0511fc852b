"""
Save command implementation.

Prunes unused dependencies and uploads changed cache groups. Upload
failures are reported but never fail the job.
"""

import logging

from cargokit.caching.coordinator import UploadOutcome
from cargokit.cli.utils import build_cargo_cache, print_error, print_warning
from cargokit.core.exceptions import CargoKitError
from cargokit.core.locking import LockTimeout

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the save command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    logger.debug(f"Arguments: {args}")

    try:
        cache = build_cargo_cache(args)
        report = cache.save()
    except LockTimeout as e:
        print_error("Cargo home is locked by another process", str(e))
        return 1
    except CargoKitError as e:
        print_error("Save failed", str(e))
        return 1

    for result in report.results:
        if result.outcome is UploadOutcome.FAILED:
            print_warning(
                f"{result.group.category.friendly_name} group {result.group.name} "
                f"was not uploaded: {result.reason}"
            )
    if not report.record_published:
        print_warning("Dependency record was not saved; next restore starts cold")

    print(report.summary())
    return 0

"""
Check-atime command implementation.

Reports whether the filesystem holding the working directory keeps
relatime-style access times.
"""

import logging

from cargokit.caching.access import supports_atime
from cargokit.cli.utils import print_error
from cargokit.core.directory import get_work_dir

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the check-atime command.

    Returns:
        0 if access times are supported, 1 otherwise
    """
    check_dir = get_work_dir(args.work_dir) / "check-atime"
    logger.debug(f"Checking access times in {check_dir}")

    try:
        supported = supports_atime(check_dir)
    except OSError as e:
        print_error("Access time check failed", str(e))
        return 1

    if supported:
        print("File access times supported")
        return 0
    print("File access times not supported")
    return 1

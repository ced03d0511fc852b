"""
Key command implementation.

Prints the store keys of one cache group, for inspecting a store by hand.
"""

import logging

from cargokit.caching.access import select_strategy
from cargokit.caching.keys import JobIdentity, KeyDeriver
from cargokit.cargo.home import Category
from cargokit.cargo.lockfiles import discover_lockfiles, read_lockfiles
from cargokit.cli.utils import load_cache_config, print_error, resolve_project_root
from cargokit.core.directory import get_work_dir
from cargokit.core.exceptions import CargoKitError
from cargokit.core.platform import detect_platform, parse_platform_string

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the key command.

    The tracking strategy is selected exactly as restore selects it, so
    under the lockfile-hash fallback the keys include the hash of the
    lockfiles found under the project root.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        config = load_cache_config(args)
        category = Category.from_name(args.category)
        platform_info = (
            parse_platform_string(config.platform) if config.platform else detect_platform()
        )
        strategy = select_strategy(
            config.tracking, platform_info, get_work_dir(args.work_dir) / "check-atime"
        )
        project_root = resolve_project_root(args.project_root)
        lockfiles = read_lockfiles(discover_lockfiles(project_root))
        modifier = strategy.key_modifier(lockfiles.content_hash())
        job = JobIdentity.from_env(matrix_json=args.matrix)
    except CargoKitError as e:
        print_error("Cannot derive keys", str(e))
        return 1

    deriver = KeyDeriver(config.cross_platform_sharing, platform_info, modifier)
    namespace = deriver.group_namespace(category, args.group)

    print(f"tracking:  {strategy.name}")
    print(f"namespace: {namespace}")
    print(f"head:      {deriver.head_key(namespace)}")
    if args.fingerprint:
        print(f"blob:      {deriver.blob_key(category, args.group, args.fingerprint)}")
    print(f"record:    {deriver.dependency_record_key(job)}")
    return 0

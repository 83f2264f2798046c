"""gowalker entry point."""

import asyncio
import sys

from loguru import logger

USAGE = """usage:
  gowalker check <import-path> [tag]     fetch if unknown, else serve stored docs
  gowalker refresh <import-path> [tag]   always refetch
  gowalker search-index                  print the search JSON for all packages
"""


def _setup_logging() -> None:
    from gowalker.config import settings

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())


def _open():
    from gowalker.config import settings
    from gowalker.orchestrator import Orchestrator
    from gowalker.recent import RecentProjects
    from gowalker.store import PackageStore

    store = PackageStore(settings.get_db_path())
    return Orchestrator(store, RecentProjects(settings.recent_max))


def _check(import_path: str, tag: str, refresh: bool) -> int:
    from gowalker.errors import DocError, InvalidRemotePathError
    from gowalker.orchestrator import RequestType

    orchestrator = _open()
    request = RequestType.REFRESH if refresh else RequestType.HUMAN
    try:
        info = asyncio.run(orchestrator.check_package(import_path, tag, request))
    except InvalidRemotePathError as e:
        print(f"{e}; try searching instead", file=sys.stderr)
        return 2
    except DocError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        orchestrator.store.close()

    print(f"{info.import_path}: {info.synopsis or '(no synopsis)'}")
    print(f"  project={info.project_name} views={info.views} rank={info.rank} pages={info.js_num}")
    return 0


def _search_index() -> int:
    orchestrator = _open()
    try:
        print(orchestrator.refresh_search_content())
    finally:
        orchestrator.store.close()
    return 0


def _cli() -> None:
    """CLI dispatcher: check, refresh or search-index subcommand."""
    _setup_logging()
    args = sys.argv[1:]
    if len(args) >= 2 and args[0] in ("check", "refresh"):
        tag = args[2] if len(args) >= 3 else ""
        sys.exit(_check(args[1], tag, refresh=args[0] == "refresh"))
    elif args and args[0] == "search-index":
        sys.exit(_search_index())
    else:
        print(USAGE, file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    _cli()

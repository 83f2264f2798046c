"""Check-and-render cycle for one import path.

``check_package`` decides between serving the stored summary, fetching a
fresh package, or failing; it is the only place where fetch errors turn
into caller-visible outcomes.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from enum import Enum

from loguru import logger

from gowalker.codec import dump_snapshot, load_snapshot
from gowalker.config import Settings
from gowalker.config import settings as default_settings
from gowalker.errors import (
    DocError,
    FetchTimeoutError,
    InvalidRemotePathError,
    NotFoundError,
    NotModifiedError,
)
from gowalker.models import Package, PkgInfo
from gowalker.recent import RecentProjects
from gowalker.render import (
    build_search_content,
    default_page_renderer,
    render_package,
    save_doc_page,
    save_readme_pages,
    shard_paths,
)
from gowalker.security import safe_output_path
from gowalker.sources.services import (
    ServiceRegistry,
    default_registry,
    fetch_package,
    is_standard_path,
    is_valid_remote_path,
)
from gowalker.store import PackageStore

# Bumped whenever the stored documentation layout changes; older etags
# then force a full refetch.
PACKAGE_VER = "1"
ETAG_PREFIX = f"{PACKAGE_VER}-"

STANDARD_PREFIX = "github.com/golang/go/tree/master/src/"
RECENT_PATH_MAX = 40

FetchFn = Callable[[str, str, str], Awaitable[Package]]
PageRenderer = Callable[[dict], str]


class RequestType(Enum):
    HUMAN = "human"
    REFRESH = "refresh"


def normalize_path(import_path: str) -> str:
    path = import_path.strip().strip("/")
    return path.removeprefix(STANDARD_PREFIX)


def strip_etag(etag: str) -> str:
    """Revision part of a stored etag, empty when written by another version."""
    if not etag.startswith(ETAG_PREFIX):
        return ""
    return etag[len(ETAG_PREFIX) :]


class Orchestrator:
    def __init__(
        self,
        store: PackageStore,
        recent: RecentProjects,
        registry: ServiceRegistry | None = None,
        fetch: FetchFn | None = None,
        page_renderer: PageRenderer | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.recent = recent
        self.settings = settings or default_settings
        self.registry = registry or default_registry()
        self.fetch = fetch or functools.partial(fetch_package, self.registry)
        self.page_renderer = page_renderer or default_page_renderer
        self.search_content = "[]"
        # Timed-out fetches still running; held so they are not collected.
        self._background: set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------

    def _snapshot_path(self, import_path: str):
        return safe_output_path(self.settings.get_snapshot_dir(), import_path, ".snap")

    def _has_pages(self, info: PkgInfo) -> bool:
        count = max(info.js_num, 1)
        paths = shard_paths(self.settings.get_docs_js_dir(), info.import_path, count)
        return all(p.is_file() for p in paths)

    # -------------------------------------------------------------------
    # Check
    # -------------------------------------------------------------------

    async def check_package(
        self,
        import_path: str,
        tag: str = "",
        request: RequestType = RequestType.HUMAN,
    ) -> PkgInfo:
        """Return the summary of ``import_path``, fetching it when needed.

        Raises :class:`InvalidRemotePathError`, :class:`NotFoundError`,
        :class:`FetchTimeoutError` or :class:`DocError`.
        """
        path = normalize_path(import_path)
        if not (is_standard_path(path) or is_valid_remote_path(path)):
            raise InvalidRemotePathError(import_path)

        info = self.store.get_pkg_info(path)
        if info is not None and request is not RequestType.REFRESH:
            await self._serve_cached(info)
            return self.store.get_pkg_info(path) or info

        etag = strip_etag(info.etag) if info is not None else ""
        try:
            pkg = await self._fetch_with_timeout(path, tag, etag)
        except NotModifiedError:
            if info is None:
                raise DocError(f"error checking package {path}: not modified but never saved")
            logger.debug(f"{path} not modified")
            self._remember(info)
            return info
        except NotFoundError:
            if len(path.split("/")) > 2:
                self.store.delete_project(path)
                self.recent.evict(path)
            raise
        except (InvalidRemotePathError, FetchTimeoutError):
            raise
        except Exception as e:
            logger.error(f"Error checking package {path}: {e}")
            raise DocError(f"error checking package {path}: {e}") from e

        try:
            saved = await self._persist(pkg, info)
        except DocError:
            raise
        except Exception as e:
            logger.error(f"Error saving package {path}: {e}")
            raise DocError(f"error saving package {path}: {e}") from e

        self._remember(saved)
        logger.info(f"Walked package: {path} (js={saved.js_num}, views={saved.views})")
        return saved

    async def _serve_cached(self, info: PkgInfo) -> None:
        """Re-render from the snapshot when the pages went missing."""
        if not self._has_pages(info):
            snapshot = self._snapshot_path(info.import_path)
            if snapshot.is_file():
                try:
                    pkg = await asyncio.to_thread(load_snapshot, snapshot)
                    info.js_num = await asyncio.to_thread(self._write_pages, pkg)
                except (DocError, OSError) as e:
                    raise DocError(f"error rendering cached doc {info.import_path}: {e}") from e
                logger.debug(f"Re-rendered {info.import_path} from snapshot")
        self.store.add_views(info.import_path)
        self._remember(info)

    async def _fetch_with_timeout(self, path: str, tag: str, etag: str) -> Package:
        """Race the fetch against ``fetch_timeout``.

        A fetch that misses the deadline is left running; whatever it
        produces later is logged and dropped.
        """
        timeout = self.settings.fetch_timeout
        task = asyncio.create_task(self.fetch(path, tag, etag))
        done, _pending = await asyncio.wait({task}, timeout=timeout)
        if done:
            return task.result()

        self._background.add(task)
        task.add_done_callback(functools.partial(self._discard_late, path))
        logger.warning(f"Fetch of {path} timed out after {timeout}s")
        raise FetchTimeoutError(path, timeout)

    def _discard_late(self, path: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Late fetch of {path} failed: {exc}")
        else:
            logger.debug(f"Discarding late fetch result for {path}")

    # -------------------------------------------------------------------
    # Render and persist
    # -------------------------------------------------------------------

    def _write_pages(self, pkg: Package) -> int:
        js_dir = self.settings.get_docs_js_dir()
        page = self.page_renderer(render_package(pkg))
        js_num = save_doc_page(js_dir, pkg.import_path, page)
        save_readme_pages(js_dir, pkg.import_path, pkg.readme)
        return js_num

    async def _persist(self, pkg: Package, previous: PkgInfo | None) -> PkgInfo:
        if previous is not None:
            pkg.id = previous.id
            pkg.created = previous.created
        pkg.etag = ETAG_PREFIX + pkg.etag

        if self.settings.snapshot_enabled:
            await asyncio.to_thread(dump_snapshot, pkg, self._snapshot_path(pkg.import_path))
        pkg.js_num = await asyncio.to_thread(self._write_pages, pkg)
        return self.store.save_project(pkg)

    def _remember(self, info: PkgInfo) -> None:
        if len(info.import_path) < RECENT_PATH_MAX:
            self.recent.upsert(info)

    # -------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------

    def refresh_search_content(self) -> str:
        """Rebuild the search JSON from every stored import path."""
        self.search_content = build_search_content(self.store.all_paths())
        logger.info(f"Search content rebuilt ({len(self.search_content)} bytes)")
        return self.search_content

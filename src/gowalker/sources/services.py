"""Map an import path to the hosting service that serves it.

The registry is an ordered, read-only table of :class:`Service` bundles
built once by :func:`default_registry`. Paths on hosts the table does not
know are resolved through the ``go-import`` meta tag protocol.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from types import MappingProxyType

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from gowalker.config import settings
from gowalker.errors import NotFoundError, RemoteError
from gowalker.models import Package
from gowalker.security import is_safe_url
from gowalker.sources.bitbucket import BITBUCKET_PATTERN, fetch_bitbucket
from gowalker.sources.fetch import FetchResult, new_client
from gowalker.sources.gitee import GITEE_PATTERN, fetch_gitee
from gowalker.sources.github import (
    GITHUB_PATTERN,
    fetch_github,
    fetch_github_presentation,
)
from gowalker.walker import build

FetchFn = Callable[[httpx.AsyncClient, dict[str, str], str, str], Awaitable[FetchResult]]
PresentationFn = Callable[[httpx.AsyncClient, dict[str, str]], Awaitable[str]]

_VALID_HOST = re.compile(r"^[-a-z0-9]+(?:\.[-a-z0-9]+)*\.[a-z]{2,}$")
_VALID_ELEMENT = re.compile(r"^[-A-Za-z0-9~+][-A-Za-z0-9_.]*$")
_HEAD_END = re.compile(r"</head>|<body", re.IGNORECASE)

STANDARD_REPO = {"owner": "golang", "repo": "go"}


@dataclass(frozen=True)
class Service:
    """Capability bundle for one hosting service."""

    name: str
    prefix: str
    pattern: re.Pattern
    fetch: FetchFn
    fetch_presentation: PresentationFn | None = None


def is_standard_path(import_path: str) -> bool:
    """``net/http`` style paths: no dot in the first element."""
    if not import_path or import_path.startswith("/"):
        return False
    parts = import_path.split("/")
    return "." not in parts[0] and all(_VALID_ELEMENT.match(p) for p in parts)


def is_valid_remote_path(import_path: str) -> bool:
    """Whether ``import_path`` can name a remote package at all."""
    parts = import_path.split("/")
    if len(parts) < 2 or not _VALID_HOST.match(parts[0]):
        return False
    return all(_VALID_ELEMENT.match(p) and p != "testdata" for p in parts[1:])


def _groups(match: re.Match, import_path: str) -> dict[str, str]:
    groups = {k: v or "" for k, v in match.groupdict().items()}
    groups["import_path"] = import_path
    return groups


class ServiceRegistry:
    """Ordered lookup table from import-path prefix to :class:`Service`."""

    def __init__(self, services: Iterable[Service], discover: bool = True):
        self._services = tuple(services)
        self._by_name = MappingProxyType({s.name: s for s in self._services})
        self._discover = discover

    @property
    def services(self) -> tuple[Service, ...]:
        return self._services

    def get(self, name: str) -> Service | None:
        return self._by_name.get(name)

    def match(self, import_path: str) -> tuple[Service, dict[str, str]] | None:
        """Static lookup; ``None`` when no prefix is known.

        A known prefix with a path its pattern rejects is an error, never a
        fall-through to a weaker match.
        """
        for service in self._services:
            if not import_path.startswith(service.prefix):
                continue
            m = service.pattern.match(import_path)
            if m is None:
                raise NotFoundError(
                    f"{import_path}: known host {service.prefix}, malformed path"
                )
            return service, _groups(m, import_path)
        return None

    async def resolve(
        self, client: httpx.AsyncClient, import_path: str
    ) -> tuple[Service, dict[str, str]]:
        """Find the service and match groups for ``import_path``."""
        if is_standard_path(import_path):
            service = self.get("github")
            if service is None:
                raise NotFoundError(f"{import_path}: no service for the standard library")
            groups = {**STANDARD_REPO, "dir": f"/src/{import_path}", "import_path": import_path}
            return service, groups

        found = self.match(import_path)
        if found is not None:
            return found
        if not self._discover:
            raise NotFoundError(f"{import_path}: unknown host")
        return await self.discover(client, import_path)

    async def discover(
        self, client: httpx.AsyncClient, import_path: str
    ) -> tuple[Service, dict[str, str]]:
        """Resolve through the ``go-import`` meta tag of the path's host."""
        root, vcs, repo_url = await fetch_meta(client, import_path)
        if root != import_path:
            root_meta = await fetch_meta(client, root)
            if root_meta != (root, vcs, repo_url):
                raise NotFoundError(
                    f"{import_path}: project root mismatch ({root} declares {root_meta[0]})"
                )

        repo_path = re.sub(r"^[a-z+]+://", "", repo_url).rstrip("/")
        repo_path = repo_path.removesuffix(".git")
        target = repo_path + import_path[len(root) :]
        found = self.match(target)
        if found is None:
            raise NotFoundError(f"{import_path}: unsupported repository {repo_url}")

        service, groups = found
        groups["import_path"] = import_path
        groups["project_root"] = root
        groups["vcs"] = vcs
        logger.debug(f"Discovered {import_path} -> {service.name} {repo_path}")
        return service, groups


# -----------------------------------------------------------------------
# go-import meta tag discovery
# -----------------------------------------------------------------------


def parse_meta(text: str, import_path: str) -> tuple[str, str, str]:
    """Pick the one ``go-import`` tag that covers ``import_path``.

    Only the document head is considered.
    """
    m = _HEAD_END.search(text)
    head = text[: m.start()] if m else text
    soup = BeautifulSoup(head, "html.parser")

    found: tuple[str, str, str] | None = None
    for tag in soup.find_all("meta", attrs={"name": "go-import"}):
        fields = (tag.get("content") or "").split()
        if len(fields) != 3:
            continue
        root = fields[0]
        if not (import_path == root or import_path.startswith(root + "/")):
            continue
        if found is not None:
            raise NotFoundError(f"{import_path}: more than one go-import meta tag")
        found = (fields[0], fields[1], fields[2])

    if found is None:
        raise NotFoundError(f"{import_path}: go-import meta tag not found")
    return found


async def fetch_meta(
    client: httpx.AsyncClient, import_path: str
) -> tuple[str, str, str]:
    """GET ``?go-get=1`` over HTTPS, retrying once over plain HTTP."""
    last: Exception | None = None
    for scheme in ("https", "http"):
        url = f"{scheme}://{import_path}?go-get=1"
        if not await asyncio.to_thread(is_safe_url, url):
            raise NotFoundError(f"{import_path}: refusing to query {url}")
        try:
            resp = await client.get(url)
        except httpx.HTTPError as e:
            last = e
            logger.debug(f"Discovery {url} failed: {e}")
            continue
        if resp.status_code != 200:
            last = RemoteError(import_path.split("/")[0], f"HTTP {resp.status_code}")
            logger.debug(f"Discovery {url}: HTTP {resp.status_code}")
            continue
        return parse_meta(resp.text, import_path)
    raise RemoteError(import_path.split("/")[0], f"discovery failed: {last}")


# -----------------------------------------------------------------------
# Registry and package fetch
# -----------------------------------------------------------------------


def default_registry(discover: bool = True) -> ServiceRegistry:
    return ServiceRegistry(
        [
            Service(
                name="github",
                prefix="github.com/",
                pattern=GITHUB_PATTERN,
                fetch=fetch_github,
                fetch_presentation=fetch_github_presentation,
            ),
            Service(
                name="bitbucket",
                prefix="bitbucket.org/",
                pattern=BITBUCKET_PATTERN,
                fetch=fetch_bitbucket,
            ),
            Service(
                name="gitee",
                prefix="gitee.com/",
                pattern=GITEE_PATTERN,
                fetch=fetch_gitee,
            ),
        ],
        discover=discover,
    )


async def fetch_package(
    registry: ServiceRegistry, import_path: str, tag: str = "", etag: str = ""
) -> Package:
    """Resolve, fetch and walk ``import_path``.

    Raises :class:`NotModifiedError` when the revision equals ``etag``.
    """
    async with new_client() as client:
        service, groups = await registry.resolve(client, import_path)
        result = await service.fetch(client, groups, tag, etag)

    pkg = await asyncio.to_thread(
        build,
        result.files,
        import_path,
        line_fmt=result.line_fmt,
        max_doc_length=settings.max_doc_length,
    )
    standard = is_standard_path(import_path)
    pkg.project_root = groups.get("project_root") or ("" if standard else result.project_root)
    pkg.project_name = "Go" if standard else result.project_name
    pkg.project_url = result.project_url
    pkg.vcs = groups.get("vcs") or result.vcs
    pkg.tag = result.tag
    pkg.etag = result.revision
    pkg.view_dir = result.view_dir
    pkg.stars = result.stars
    pkg.dirs = result.dirs
    pkg.has_subdir = bool(result.dirs)
    logger.info(f"Fetched {import_path} from {service.name} at {result.revision[:12]}")
    return pkg


async def fetch_presentation(registry: ServiceRegistry, import_path: str) -> str:
    """Project presentation (README) where the service offers one."""
    async with new_client() as client:
        service, groups = await registry.resolve(client, import_path)
        if service.fetch_presentation is None:
            raise NotFoundError(f"{import_path}: {service.name} has no presentation")
        return await service.fetch_presentation(client, groups)

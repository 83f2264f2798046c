"""HTTP plumbing shared by the hosting-service strategies.

A fetch cycle opens one client with :func:`new_client` and closes it when
the cycle ends, so idle connections never outlive a fetch.
"""

import asyncio
import posixpath
from dataclasses import dataclass, field
from urllib.parse import urlsplit

import httpx
from loguru import logger

from gowalker.config import settings
from gowalker.errors import NoSourceFilesError, NotFoundError, RemoteError
from gowalker.models import Source


@dataclass
class FetchResult:
    """What a strategy hands to the walker."""

    files: list[Source]
    dirs: list[str]
    revision: str
    project_root: str
    project_name: str = ""
    project_url: str = ""
    vcs: str = "git"
    tag: str = ""
    view_dir: str = ""
    line_fmt: str = "#L%d"
    stars: int = 0
    extra: dict = field(default_factory=dict)


def new_client() -> httpx.AsyncClient:
    """Client for one fetch cycle; use it as ``async with``."""
    transport = httpx.AsyncHTTPTransport(retries=settings.http_retries)
    return httpx.AsyncClient(
        timeout=settings.http_timeout,
        transport=transport,
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
    )


def github_headers() -> dict[str, str]:
    """Return GitHub API headers, including auth token if available."""
    headers: dict[str, str] = {}
    token = settings.resolve_github_token()
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def _host(url: str) -> str:
    return urlsplit(url).netloc or url


async def _get(
    client: httpx.AsyncClient, url: str, headers: dict[str, str] | None = None
) -> httpx.Response:
    try:
        resp = await client.get(url, headers=headers or {})
    except httpx.HTTPError as e:
        raise RemoteError(_host(url), e) from e
    if resp.status_code == 404:
        raise NotFoundError(f"{url}: not found")
    if resp.status_code != 200:
        raise RemoteError(_host(url), f"{url}: HTTP {resp.status_code}")
    return resp


async def get_bytes(
    client: httpx.AsyncClient, url: str, headers: dict[str, str] | None = None
) -> bytes:
    return (await _get(client, url, headers)).content


async def get_text(
    client: httpx.AsyncClient, url: str, headers: dict[str, str] | None = None
) -> str:
    return (await _get(client, url, headers)).text


async def get_json(
    client: httpx.AsyncClient, url: str, headers: dict[str, str] | None = None
):
    resp = await _get(client, url, headers)
    try:
        return resp.json()
    except ValueError as e:
        raise RemoteError(_host(url), f"{url}: invalid JSON: {e}") from e


async def fetch_files(
    client: httpx.AsyncClient,
    files: list[Source],
    headers: dict[str, str] | None = None,
    concurrency: int | None = None,
) -> None:
    """Download ``raw_url`` of every file into ``Source.data``.

    The first failure cancels the pending downloads and aborts the batch.
    """
    semaphore = asyncio.Semaphore(concurrency or settings.max_concurrent_downloads)

    async def _download_one(source: Source) -> None:
        async with semaphore:
            try:
                source.data = await get_bytes(client, source.raw_url, headers)
            except (NotFoundError, RemoteError) as e:
                raise RemoteError(_host(source.raw_url), f"fetch {source.name}: {e}") from e

    try:
        async with asyncio.TaskGroup() as tg:
            for source in files:
                tg.create_task(_download_one(source))
    except ExceptionGroup as eg:
        raise eg.exceptions[0]

    logger.debug(f"Downloaded {len(files)} files")


def is_doc_file(name: str) -> bool:
    """Go sources that the toolchain would build, and README files."""
    if name.endswith(".go"):
        return not name.startswith(("_", "."))
    return name.lower().startswith("readme")


def partition_manifest(paths: list[str], dir: str) -> tuple[list[str], list[str]]:
    """Split repository paths into direct doc files of ``dir`` and sub-packages.

    ``dir`` is relative to the repository root without leading or trailing
    slash. Returns ``(files, dirs)``: full paths of doc files directly inside
    ``dir`` and sorted names of its immediate subdirectories that hold doc
    files themselves.
    """
    prefix = dir.strip("/")
    prefix = prefix + "/" if prefix else ""
    files: list[str] = []
    subdirs: set[str] = set()

    for path in paths:
        if not path.startswith(prefix):
            continue
        parent, name = posixpath.split(path[len(prefix) :])
        if not is_doc_file(name):
            continue
        if not parent:
            files.append(path)
        elif "/" not in parent and not parent.startswith((".", "_")) and parent != "testdata":
            subdirs.add(parent)

    return files, sorted(subdirs)


def require_sources(files: list, dirs: list, import_path: str) -> None:
    if not files and not dirs:
        raise NoSourceFilesError(import_path)

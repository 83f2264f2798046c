"""GitHub strategy: REST API for metadata, raw host for file contents.

The Go standard library is served from the ``golang/go`` repository through
the same strategy with ``dir`` pointing below ``/src``.
"""

import posixpath
import re

import httpx
from loguru import logger

from gowalker.errors import NotFoundError, NotModifiedError, RemoteError
from gowalker.models import Source
from gowalker.sources.fetch import (
    FetchResult,
    fetch_files,
    get_json,
    get_text,
    github_headers,
    partition_manifest,
    require_sources,
)

GITHUB_PATTERN = re.compile(
    r"^github\.com/(?P<owner>[a-z0-9A-Z_.\-]+)/(?P<repo>[a-z0-9A-Z_.\-]+)"
    r"(?P<dir>/[a-z0-9A-Z_.\-/]*)?$"
)

API_ROOT = "https://api.github.com/repos"
RAW_ROOT = "https://raw.githubusercontent.com"


async def get_revision(
    client: httpx.AsyncClient, owner: str, repo: str, tag: str
) -> str:
    """Commit SHA the branch or tag currently points at."""
    commit = await get_json(
        client, f"{API_ROOT}/{owner}/{repo}/commits/{tag}", github_headers()
    )
    sha = commit.get("sha") if isinstance(commit, dict) else None
    if not sha:
        raise RemoteError("api.github.com", f"{owner}/{repo}@{tag}: commit without sha")
    return sha


async def fetch_github(
    client: httpx.AsyncClient, groups: dict[str, str], tag: str, etag: str
) -> FetchResult:
    """Fetch the doc files of one GitHub directory."""
    owner, repo = groups["owner"], groups["repo"]
    dir = (groups.get("dir") or "").strip("/")
    headers = github_headers()
    api = f"{API_ROOT}/{owner}/{repo}"

    repo_info = None
    if not tag:
        repo_info = await get_json(client, api, headers)
        tag = repo_info.get("default_branch") or "master"

    revision = await get_revision(client, owner, repo, tag)
    if revision == etag:
        raise NotModifiedError(revision)

    tree = await get_json(client, f"{api}/git/trees/{revision}?recursive=1", headers)
    # The API is case-insensitive; the canonical URL tells us the real case.
    if not tree.get("url", "").startswith(api + "/"):
        raise NotFoundError(f"github.com/{owner}/{repo}: import path has incorrect case")
    if tree.get("truncated"):
        logger.warning(f"github.com/{owner}/{repo}: tree listing truncated")

    paths = [n["path"] for n in tree.get("tree", []) if n.get("type") == "blob"]
    file_paths, dirs = partition_manifest(paths, dir)
    require_sources(file_paths, dirs, f"github.com/{owner}/{repo}/{dir}".rstrip("/"))

    files = [
        Source(
            name=posixpath.basename(path),
            browse_url=f"https://github.com/{owner}/{repo}/blob/{tag}/{path}",
            raw_url=f"{RAW_ROOT}/{owner}/{repo}/{revision}/{path}",
        )
        for path in file_paths
    ]
    await fetch_files(client, files, headers)

    if repo_info is None:
        repo_info = await get_json(client, api, headers)

    return FetchResult(
        files=files,
        dirs=dirs,
        revision=revision,
        project_root=f"github.com/{owner}/{repo}",
        project_name=repo,
        project_url=f"https://github.com/{owner}/{repo}",
        vcs="git",
        tag=tag,
        view_dir=f"https://github.com/{owner}/{repo}/tree/{tag}/{dir}".rstrip("/"),
        line_fmt="#L%d",
        stars=int(repo_info.get("stargazers_count") or repo_info.get("watchers") or 0),
    )


async def fetch_github_presentation(
    client: httpx.AsyncClient, groups: dict[str, str]
) -> str:
    """README of the repository (or directory) as raw markdown."""
    owner, repo = groups["owner"], groups["repo"]
    dir = (groups.get("dir") or "").strip("/")
    url = f"{API_ROOT}/{owner}/{repo}/readme"
    if dir:
        url += f"/{dir}"
    headers = {**github_headers(), "Accept": "application/vnd.github.raw"}
    return await get_text(client, url, headers)

"""Bitbucket Cloud strategy (API 2.0)."""

import posixpath
import re

import httpx

from gowalker.errors import NotModifiedError, RemoteError
from gowalker.models import Source
from gowalker.sources.fetch import (
    FetchResult,
    fetch_files,
    get_json,
    partition_manifest,
    require_sources,
)

BITBUCKET_PATTERN = re.compile(
    r"^bitbucket\.org/(?P<owner>[a-z0-9A-Z_.\-]+)/(?P<repo>[a-z0-9A-Z_.\-]+)"
    r"(?P<dir>/[a-z0-9A-Z_.\-/]*)?$"
)

API_ROOT = "https://api.bitbucket.org/2.0/repositories"

# Listing depth below the requested directory: its files plus one level.
_LIST_DEPTH = 2
_MAX_PAGES = 20


async def _list_paths(
    client: httpx.AsyncClient, owner: str, repo: str, revision: str, dir: str
) -> list[str]:
    url = f"{API_ROOT}/{owner}/{repo}/src/{revision}/{dir}?pagelen=100&max_depth={_LIST_DEPTH}"
    paths: list[str] = []
    for _ in range(_MAX_PAGES):
        page = await get_json(client, url)
        paths.extend(
            v["path"] for v in page.get("values", []) if v.get("type") == "commit_file"
        )
        url = page.get("next")
        if not url:
            break
    return paths


async def fetch_bitbucket(
    client: httpx.AsyncClient, groups: dict[str, str], tag: str, etag: str
) -> FetchResult:
    owner, repo = groups["owner"], groups["repo"]
    dir = (groups.get("dir") or "").strip("/")
    api = f"{API_ROOT}/{owner}/{repo}"

    info = await get_json(client, api)
    if not tag:
        tag = (info.get("mainbranch") or {}).get("name") or "master"

    commit = await get_json(client, f"{api}/commit/{tag}")
    revision = commit.get("hash", "")
    if not revision:
        raise RemoteError("api.bitbucket.org", f"{owner}/{repo}@{tag}: commit without hash")
    if revision == etag:
        raise NotModifiedError(revision)

    paths = await _list_paths(client, owner, repo, revision, dir)
    file_paths, dirs = partition_manifest(paths, dir)
    require_sources(file_paths, dirs, f"bitbucket.org/{owner}/{repo}/{dir}".rstrip("/"))

    files = [
        Source(
            name=posixpath.basename(path),
            browse_url=f"https://bitbucket.org/{owner}/{repo}/src/{revision}/{path}",
            raw_url=f"{api}/src/{revision}/{path}",
        )
        for path in file_paths
    ]
    await fetch_files(client, files)

    return FetchResult(
        files=files,
        dirs=dirs,
        revision=revision,
        project_root=f"bitbucket.org/{owner}/{repo}",
        project_name=repo,
        project_url=f"https://bitbucket.org/{owner}/{repo}",
        vcs=info.get("scm") or "git",
        tag=tag,
        view_dir=f"https://bitbucket.org/{owner}/{repo}/src/{revision}/{dir}".rstrip("/"),
        line_fmt="#lines-%d",
    )

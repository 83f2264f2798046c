"""Gitee strategy: the whole repository arrives as one zip archive.

The archive comment written by ``git archive`` is the commit id; archives
without one fall back to the SHA-1 of their bytes.
"""

import hashlib
import io
import posixpath
import re
import zipfile

import httpx
from loguru import logger

from gowalker.errors import NotModifiedError, RemoteError
from gowalker.models import Source
from gowalker.sources.fetch import (
    FetchResult,
    get_bytes,
    partition_manifest,
    require_sources,
)

GITEE_PATTERN = re.compile(
    r"^gitee\.com/(?P<owner>[a-z0-9A-Z_.\-]+)/(?P<repo>[a-z0-9A-Z_.\-]+)"
    r"(?P<dir>/[a-z0-9A-Z_.\-/]*)?$"
)


def archive_revision(blob: bytes, archive: zipfile.ZipFile) -> str:
    comment = archive.comment.decode("ascii", errors="ignore").strip()
    return comment or hashlib.sha1(blob).hexdigest()


def _members(archive: zipfile.ZipFile) -> dict[str, zipfile.ZipInfo]:
    """Repository-relative path -> member, dropping the top-level folder."""
    out = {}
    for info in archive.infolist():
        if info.is_dir():
            continue
        _, _, rel = info.filename.partition("/")
        if rel:
            out[rel] = info
    return out


async def fetch_gitee(
    client: httpx.AsyncClient, groups: dict[str, str], tag: str, etag: str
) -> FetchResult:
    owner, repo = groups["owner"], groups["repo"]
    dir = (groups.get("dir") or "").strip("/")
    tag = tag or "master"

    blob = await get_bytes(
        client, f"https://gitee.com/{owner}/{repo}/repository/archive/{tag}.zip"
    )
    try:
        archive = zipfile.ZipFile(io.BytesIO(blob))
    except zipfile.BadZipFile as e:
        raise RemoteError("gitee.com", f"{owner}/{repo}@{tag}: bad archive: {e}") from e

    with archive:
        revision = archive_revision(blob, archive)
        if revision == etag:
            raise NotModifiedError(revision)

        members = _members(archive)
        file_paths, dirs = partition_manifest(list(members), dir)
        require_sources(file_paths, dirs, f"gitee.com/{owner}/{repo}/{dir}".rstrip("/"))

        files = [
            Source(
                name=posixpath.basename(path),
                browse_url=f"https://gitee.com/{owner}/{repo}/blob/{tag}/{path}",
                raw_url=f"https://gitee.com/{owner}/{repo}/raw/{tag}/{path}",
                data=archive.read(members[path]),
            )
            for path in file_paths
        ]

    logger.debug(f"gitee.com/{owner}/{repo}: {len(files)} files from archive")
    return FetchResult(
        files=files,
        dirs=dirs,
        revision=revision,
        project_root=f"gitee.com/{owner}/{repo}",
        project_name=repo,
        project_url=f"https://gitee.com/{owner}/{repo}",
        vcs="git",
        tag=tag,
        view_dir=f"https://gitee.com/{owner}/{repo}/tree/{tag}/{dir}".rstrip("/"),
        line_fmt="#L%d",
    )

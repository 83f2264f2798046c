"""Tests for src/gowalker/sources/fetch.py -- shared HTTP plumbing."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import make_client, make_response

from gowalker.errors import NoSourceFilesError, NotFoundError, RemoteError
from gowalker.models import Source
from gowalker.sources.fetch import (
    fetch_files,
    get_bytes,
    get_json,
    is_doc_file,
    partition_manifest,
    require_sources,
)

# -----------------------------------------------------------------------
# Manifest filtering
# -----------------------------------------------------------------------


class TestManifest:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("a.go", True),
            ("a_test.go", True),
            ("_skip.go", False),
            (".hidden.go", False),
            ("README.md", True),
            ("readme", True),
            ("main.c", False),
            ("LICENSE", False),
        ],
    )
    def test_is_doc_file(self, name, expected):
        assert is_doc_file(name) is expected

    def test_partition(self):
        paths = [
            "go.mod",
            "root.go",
            "pkg/a.go",
            "pkg/a_test.go",
            "pkg/README.md",
            "pkg/notes.txt",
            "pkg/sub/b.go",
            "pkg/sub/deeper/c.go",
            "pkg/other/LICENSE",
            "pkg/testdata/x.go",
            "pkg/_private/y.go",
            "pkg/.git/z.go",
        ]
        files, dirs = partition_manifest(paths, "pkg")
        assert files == ["pkg/a.go", "pkg/a_test.go", "pkg/README.md"]
        assert dirs == ["sub"]

    def test_partition_repository_root(self):
        files, dirs = partition_manifest(["root.go", "cmd/tool/main.go", "lib/x.go"], "")
        assert files == ["root.go"]
        assert dirs == ["lib"]

    def test_require_sources(self):
        require_sources([], ["sub"], "example.com/x")
        with pytest.raises(NoSourceFilesError, match="example.com/x"):
            require_sources([], [], "example.com/x")


# -----------------------------------------------------------------------
# HTTP helpers
# -----------------------------------------------------------------------


class TestGet:
    @pytest.mark.asyncio
    async def test_not_found(self):
        client = make_client({})
        with pytest.raises(NotFoundError):
            await get_bytes(client, "https://host.example/missing")

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = make_client({"/boom": make_response(502)})
        with pytest.raises(RemoteError) as exc:
            await get_bytes(client, "https://host.example/boom")
        assert exc.value.host == "host.example"

    @pytest.mark.asyncio
    async def test_transport_error(self):
        client = make_client({})
        client.get.side_effect = httpx.ConnectError("refused")
        with pytest.raises(RemoteError, match="refused"):
            await get_bytes(client, "https://host.example/x")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = make_client({"/api": make_response(200, content=b"<html>")})
        with pytest.raises(RemoteError, match="invalid JSON"):
            await get_json(client, "https://host.example/api")


# -----------------------------------------------------------------------
# Bulk download
# -----------------------------------------------------------------------


class TestFetchFiles:
    @pytest.mark.asyncio
    async def test_downloads_all(self):
        client = make_client(
            {
                "/a.go": make_response(content=b"package a"),
                "/b.go": make_response(content=b"package b"),
            }
        )
        files = [
            Source(name="a.go", raw_url="https://raw.example/a.go"),
            Source(name="b.go", raw_url="https://raw.example/b.go"),
        ]
        await fetch_files(client, files, concurrency=1)
        assert [f.data for f in files] == [b"package a", b"package b"]

    @pytest.mark.asyncio
    async def test_one_failure_fails_batch(self):
        client = make_client({"/a.go": make_response(content=b"package a")})
        files = [
            Source(name="a.go", raw_url="https://raw.example/a.go"),
            Source(name="gone.go", raw_url="https://raw.example/gone.go"),
        ]
        with pytest.raises(RemoteError, match="gone.go"):
            await fetch_files(client, files)

    @pytest.mark.asyncio
    async def test_failure_cancels_pending_downloads(self):
        cancelled = []

        async def route_get(url, **kwargs):
            if url.endswith("slow.go"):
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.append(url)
                    raise
            return make_response(status_code=404)

        client = AsyncMock()
        client.get = AsyncMock(side_effect=route_get)
        files = [
            Source(name="slow.go", raw_url="https://raw.example/slow.go"),
            Source(name="gone.go", raw_url="https://raw.example/gone.go"),
        ]
        with pytest.raises(RemoteError, match="gone.go"):
            await asyncio.wait_for(fetch_files(client, files), timeout=2)
        assert cancelled == ["https://raw.example/slow.go"]
        assert files[0].data == b""

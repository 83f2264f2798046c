"""Tests for src/gowalker/sources/services.py -- resolving import paths."""

from unittest.mock import patch

import httpx
import pytest
from conftest import make_client, make_response

from gowalker.errors import NotFoundError, RemoteError
from gowalker.sources.services import (
    default_registry,
    fetch_meta,
    is_standard_path,
    is_valid_remote_path,
    parse_meta,
)


def _meta_page(*contents: str, body: str = "") -> str:
    tags = "".join(f'<meta name="go-import" content="{c}">' for c in contents)
    return f"<html><head>{tags}</head><body>{body}</body></html>"


@pytest.fixture
def registry():
    return default_registry()


# -----------------------------------------------------------------------
# Path classification
# -----------------------------------------------------------------------


class TestPaths:
    @pytest.mark.parametrize("path", ["fmt", "net/http", "encoding/json"])
    def test_standard(self, path):
        assert is_standard_path(path)

    @pytest.mark.parametrize("path", ["github.com/a/b", "", "/fmt", "a b"])
    def test_not_standard(self, path):
        assert not is_standard_path(path)

    @pytest.mark.parametrize(
        "path",
        ["github.com/foo/bar", "gopkg.in/yaml.v3", "example.com/x/y_z"],
    )
    def test_valid_remote(self, path):
        assert is_valid_remote_path(path)

    @pytest.mark.parametrize(
        "path",
        ["github.com", "localhost/x", "github.com/a/testdata", "github.com/a/../b", "Git Hub.com/a"],
    )
    def test_invalid_remote(self, path):
        assert not is_valid_remote_path(path)


# -----------------------------------------------------------------------
# Static table
# -----------------------------------------------------------------------


class TestMatch:
    def test_github_groups(self, registry):
        service, groups = registry.match("github.com/foo/bar/baz")
        assert service.name == "github"
        assert groups["owner"] == "foo"
        assert groups["repo"] == "bar"
        assert groups["dir"] == "/baz"
        assert groups["import_path"] == "github.com/foo/bar/baz"

    def test_repo_root_has_empty_dir(self, registry):
        _, groups = registry.match("bitbucket.org/team/proj")
        assert groups["dir"] == ""

    def test_malformed_known_host(self, registry):
        with pytest.raises(NotFoundError, match="malformed"):
            registry.match("github.com/onlyowner")

    def test_unknown_host(self, registry):
        assert registry.match("example.com/x") is None

    def test_services_ordered(self, registry):
        assert [s.name for s in registry.services] == ["github", "bitbucket", "gitee"]
        assert registry.get("gitee").prefix == "gitee.com/"
        assert registry.get("nope") is None


class TestResolve:
    @pytest.mark.asyncio
    async def test_standard_library(self, registry):
        client = make_client({})
        service, groups = await registry.resolve(client, "net/http")
        assert service.name == "github"
        assert (groups["owner"], groups["repo"], groups["dir"]) == ("golang", "go", "/src/net/http")
        client.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_static_match_skips_network(self, registry):
        client = make_client({})
        service, _ = await registry.resolve(client, "gitee.com/a/b")
        assert service.name == "gitee"
        client.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_discovery_disabled(self):
        registry = default_registry(discover=False)
        with pytest.raises(NotFoundError, match="unknown host"):
            await registry.resolve(make_client({}), "example.com/x")

    @pytest.mark.asyncio
    async def test_discovery_maps_to_static_service(self, registry):
        page = _meta_page("example.com/proj git https://github.com/org/proj.git")
        # Both the path and its project root serve the same tag.
        client = make_client({"example.com/proj": make_response(text=page)})
        with patch("gowalker.sources.services.is_safe_url", return_value=True):
            service, groups = await registry.resolve(client, "example.com/proj/sub")
        assert service.name == "github"
        assert groups["owner"] == "org"
        assert groups["repo"] == "proj"
        assert groups["dir"] == "/sub"
        assert groups["project_root"] == "example.com/proj"
        assert groups["import_path"] == "example.com/proj/sub"
        assert client.get.call_count == 2

    @pytest.mark.asyncio
    async def test_discovery_root_mismatch(self, registry):
        pages = {
            "example.com/proj/sub?": _meta_page("example.com/proj git https://github.com/org/proj"),
            "example.com/proj?": _meta_page("example.com/proj git https://github.com/other/fork"),
        }

        def route_get(url, **kwargs):
            for key, page in pages.items():
                if key in url:
                    return make_response(text=page)
            return make_response(404)

        client = make_client({})
        client.get.side_effect = route_get
        with patch("gowalker.sources.services.is_safe_url", return_value=True):
            with pytest.raises(NotFoundError, match="root mismatch"):
                await registry.resolve(client, "example.com/proj/sub")

    @pytest.mark.asyncio
    async def test_discovery_unsupported_repo(self, registry):
        page = _meta_page("example.com/p git https://git.example.org/p")
        client = make_client({"example.com/p?": make_response(text=page)})
        with patch("gowalker.sources.services.is_safe_url", return_value=True):
            with pytest.raises(NotFoundError, match="unsupported repository"):
                await registry.resolve(client, "example.com/p")


# -----------------------------------------------------------------------
# go-import meta tags
# -----------------------------------------------------------------------


class TestParseMeta:
    def test_single_tag(self):
        page = _meta_page("example.com/p git https://github.com/o/p")
        assert parse_meta(page, "example.com/p/sub") == ("example.com/p", "git", "https://github.com/o/p")

    def test_two_matching_tags_ambiguous(self):
        page = _meta_page(
            "example.com/p git https://github.com/o/p",
            "example.com/p hg https://bitbucket.org/o/p",
        )
        with pytest.raises(NotFoundError, match="more than one"):
            parse_meta(page, "example.com/p")

    def test_prefix_must_end_on_segment(self):
        page = _meta_page("example.com/p git https://github.com/o/p")
        with pytest.raises(NotFoundError, match="not found"):
            parse_meta(page, "example.com/pkg")

    def test_wrong_field_count_ignored(self):
        page = _meta_page("example.com/p git", "example.com/p git https://github.com/o/p")
        assert parse_meta(page, "example.com/p")[2] == "https://github.com/o/p"

    def test_body_ignored(self):
        page = _meta_page(body='<meta name="go-import" content="example.com/p git https://x/p">')
        with pytest.raises(NotFoundError, match="not found"):
            parse_meta(page, "example.com/p")


class TestFetchMeta:
    @pytest.mark.asyncio
    async def test_http_fallback(self):
        page = _meta_page("example.com/p git https://github.com/o/p")
        client = make_client(
            {
                "https://example.com/p": make_response(500),
                "http://example.com/p": make_response(text=page),
            }
        )
        with patch("gowalker.sources.services.is_safe_url", return_value=True):
            root, vcs, url = await fetch_meta(client, "example.com/p")
        assert root == "example.com/p"
        urls = [c.args[0] for c in client.get.call_args_list]
        assert urls == ["https://example.com/p?go-get=1", "http://example.com/p?go-get=1"]

    @pytest.mark.asyncio
    async def test_transport_error_falls_back(self):
        page = _meta_page("example.com/p git https://github.com/o/p")

        def route_get(url, **kwargs):
            if url.startswith("https://"):
                raise httpx.ConnectError("tls")
            return make_response(text=page)

        client = make_client({})
        client.get.side_effect = route_get
        with patch("gowalker.sources.services.is_safe_url", return_value=True):
            assert (await fetch_meta(client, "example.com/p"))[0] == "example.com/p"

    @pytest.mark.asyncio
    async def test_both_schemes_fail(self):
        client = make_client({}, default=make_response(503))
        with patch("gowalker.sources.services.is_safe_url", return_value=True):
            with pytest.raises(RemoteError, match="discovery failed"):
                await fetch_meta(client, "example.com/p")

    @pytest.mark.asyncio
    async def test_unsafe_host_refused(self):
        client = make_client({})
        with patch("gowalker.sources.services.is_safe_url", return_value=False):
            with pytest.raises(NotFoundError, match="refusing"):
                await fetch_meta(client, "internal.example/p")
        client.get.assert_not_called()

"""Tests for src/gowalker/render.py -- display map, doc HTML and JS shards."""

import json

import pytest

from gowalker.errors import InvalidRemotePathError
from gowalker.models import Example, Func, Package, Source, Type, Value
from gowalker.render import (
    build_search_content,
    comment_to_html,
    default_page_renderer,
    doc_coverage,
    get_examples,
    get_links,
    html_to_js,
    render_package,
    save_doc_page,
    save_readme_pages,
    split_shards,
    time_since,
    view_file_path,
)


@pytest.fixture
def pkg():
    greeter = Type(
        name="Greeter",
        doc="Greeter greets.",
        decl="type Greeter struct{}",
        funcs=[Func(name="NewGreeter", doc="New.", decl="func NewGreeter() *Greeter")],
        methods=[Func(name="Hello", decl="func (g *Greeter) Hello() string")],
    )
    return Package(
        import_path="github.com/owner/greet",
        project_root="github.com/owner/greet",
        doc="Package greet says hello.",
        consts=[Value(name="Version", doc="Version doc.", decl='const Version = "1"')],
        funcs=[Func(name="Shout", doc="Shout loudly.", decl="func Shout(g *Greeter)")],
        types=[greeter],
        examples=[
            Example(name="Greeter"),
            Example(name="Greeter_Hello"),
            Example(name="Greeter_Hello_second"),
            Example(name="Shout", code="greet.Shout(x)"),
        ],
        files=[Source(name="greet.go", browse_url="https://github.com/owner/greet/blob/main/greet.go")],
        imports=["fmt", "C"],
        dirs=["sub"],
    )


# -----------------------------------------------------------------------
# Links and example claiming
# -----------------------------------------------------------------------


class TestLinksAndExamples:
    def test_links(self, pkg):
        names = [link.name for link in get_links(pkg)]
        assert names[:3] == ["Greeter", "Shout", "NewGreeter"]
        assert "fmt." in names
        assert "C." not in names

    def test_method_examples_claimed_once(self, pkg):
        claimed = get_examples(pkg, "Greeter", "Hello")
        assert [e.name for e in claimed] == ["Greeter_Hello", "Greeter_Hello_second"]
        assert get_examples(pkg, "Greeter", "Hello") == []

    def test_method_does_not_take_longer_method_name(self):
        buffer = Type(
            name="Buffer",
            methods=[Func(name="Read"), Func(name="ReadAt")],
        )
        pkg = Package(
            import_path="example.com/buf",
            name="buf",
            types=[buffer],
            examples=[
                Example(name="Buffer_Read"),
                Example(name="Buffer_ReadAt"),
                Example(name="Buffer_Read_second"),
            ],
        )
        claimed = get_examples(pkg, "Buffer", "Read")
        assert [e.name for e in claimed] == ["Buffer_Read", "Buffer_Read_second"]
        assert [e.name for e in get_examples(pkg, "Buffer", "ReadAt")] == ["Buffer_ReadAt"]

    def test_type_gets_what_methods_left(self, pkg):
        get_examples(pkg, "Greeter", "Hello")
        claimed = get_examples(pkg, "", "Greeter")
        assert [e.name for e in claimed] == ["Greeter"]

    def test_exact_name_without_suffix(self, pkg):
        pkg.examples = [Example(name="Shouter")]
        assert get_examples(pkg, "", "Shout") == []

    def test_prefix_name_does_not_take_longer_owner(self, pkg):
        pkg.examples = [Example(name="Shout_loud")]
        assert get_examples(pkg, "", "Sh") == []
        assert [e.name for e in get_examples(pkg, "", "Shout")] == ["Shout_loud"]


# -----------------------------------------------------------------------
# Doc comments
# -----------------------------------------------------------------------


class TestCommentToHtml:
    def test_paragraphs(self):
        assert comment_to_html("One\ntwo.\n\nThree.") == "<p>One two.</p>\n<p>Three.</p>"

    def test_pre_block(self):
        out = comment_to_html("Use it:\n\n\tx := 1\n\ty := 2\n")
        assert "<pre>x := 1\ny := 2</pre>" in out

    def test_heading(self):
        out = comment_to_html("Intro.\n\nUsage Notes\n\nBody.")
        assert '<h3 id="hdr-Usage_Notes">Usage Notes</h3>' in out

    def test_urls_and_escaping(self):
        out = comment_to_html("See https://go.dev/doc for <details>.")
        assert '<a href="https://go.dev/doc">https://go.dev/doc</a>' in out
        assert "&lt;details&gt;" in out

    def test_empty(self):
        assert comment_to_html("") == ""


# -----------------------------------------------------------------------
# Display map
# -----------------------------------------------------------------------


class TestRenderPackage:
    def test_claims_examples_and_formats(self, pkg):
        data = render_package(pkg)
        greeter = pkg.types[0]
        assert [e.name for e in greeter.examples] == ["Greeter"]
        assert [e.name for e in greeter.methods[0].examples] == ["Greeter_Hello", "Greeter_Hello_second"]
        assert greeter.methods[0].full_name == "Greeter_Hello"
        assert [e.name for e in pkg.funcs[0].examples] == ["Shout"]
        assert 'href="#Greeter"' in pkg.funcs[0].fmt_decl
        assert data["types"][0]["methods"][0]["full_name"] == "Greeter_Hello"

    def test_rendering_twice_is_stable(self, pkg):
        first = render_package(pkg)
        second = render_package(pkg)
        assert first["types"] == second["types"]
        assert [e.name for e in pkg.funcs[0].examples] == ["Shout"]

    def test_example_code_links_package_name(self, pkg):
        data = render_package(pkg)
        shout = next(e for e in data["examples"] if e["name"] == "Shout")
        assert 'href="#Shout"' in shout["code"]

    def test_flags_and_meta(self, pkg):
        data = render_package(pkg)
        assert pkg.has_export and pkg.has_example and pkg.has_file and pkg.has_subdir
        assert data["secure"] is True
        assert data["view_file_path"] == "https://github.com/owner/greet/tree/main/"
        assert data["doc"] == "<p>Package greet says hello.</p>"
        # The model keeps raw doc text.
        assert pkg.doc == "Package greet says hello."

    def test_default_page(self, pkg):
        page = default_page_renderer(render_package(pkg))
        assert "<b>github.com/owner/greet</b>" in page
        assert "<b>Constants</b>" in page
        assert "type Greeter" in page


class TestCoverage:
    def test_all_documented(self):
        pkg = Package(import_path="x", funcs=[Func(name="A", doc="d")])
        assert doc_coverage(pkg) == (100, "success")

    def test_thresholds(self):
        def with_docs(documented, total):
            funcs = [Func(name=f"F{i}", doc="d" if i < documented else "") for i in range(total)]
            return Package(import_path="x", funcs=funcs)

        assert doc_coverage(with_docs(6, 10)) == (60, "warning")
        assert doc_coverage(with_docs(5, 10)) == (50, "important")
        assert doc_coverage(with_docs(9, 10)) == (90, "success")

    def test_nothing_exported(self):
        assert doc_coverage(Package(import_path="x")) == (100, "success")


class TestHelpers:
    def test_time_since(self):
        assert time_since(1000, now=1000 + 2 * 3600) == "2 hours ago"
        assert time_since(1000, now=1001) == "1 second ago"
        assert time_since(1000, now=1000 + 86400) == "1 day ago"

    def test_view_file_path_non_github(self):
        pkg = Package(
            import_path="gitee.com/o/r",
            files=[Source(name="a.go", browse_url="https://gitee.com/o/r/blob/master/a.go")],
        )
        assert view_file_path(pkg) == "https://gitee.com/o/r/blob/master/"

    def test_view_file_path_no_files(self):
        assert view_file_path(Package(import_path="x")) == ""


# -----------------------------------------------------------------------
# JS shards
# -----------------------------------------------------------------------


class TestShards:
    def test_html_to_js(self):
        assert html_to_js('a "b"\\\r\nc') == 'a \\"b\\"\\\\\\nc'

    def test_small_page_single_shard(self):
        assert split_shards("x" * 100) == ["x" * 100]

    def test_split_on_bold_close(self):
        block = "y" * 1000 + "<b>t</b>"
        data = block * 85
        shards = split_shards(data)
        assert len(data) > 80000
        assert len(shards) == 3
        assert "".join(shards) == data
        for shard in shards[:-1]:
            assert shard.endswith("</b>")
            assert len(shard) >= 40000

    def test_cut_never_moves_back(self):
        data = "z" * 85000
        shards = split_shards(data)
        assert shards == [data]

    def test_save_doc_page(self, tmp_path):
        count = save_doc_page(tmp_path, "github.com/o/r", "<p>hi</p>")
        assert count == 1
        text = (tmp_path / "github.com/o/r.js").read_text()
        assert text == 'document.write("<p>hi</p>")\n'

    def test_save_doc_page_sharded(self, tmp_path):
        page = ("y" * 1000 + "<b>t</b>") * 85
        count = save_doc_page(tmp_path, "example.com/big", page)
        assert count == 3
        assert (tmp_path / "example.com/big-1.js").is_file()
        assert (tmp_path / "example.com/big-2.js").is_file()

    def test_save_rejects_traversal(self, tmp_path):
        with pytest.raises(InvalidRemotePathError):
            save_doc_page(tmp_path, "../escape", "x")

    def test_readme_pages(self, tmp_path):
        written = save_readme_pages(tmp_path, "example.com/p", {"en": "\n# Title <x>", "zh": ""})
        assert [p.name for p in written] == ["p_RM_en.js"]
        assert written[0].read_text() == 'document.write("# Title &lt;x&gt;")\n'


class TestSearchContent:
    def test_sorted_items(self):
        items = json.loads(build_search_content({"b.com/x", "a.com/y"}))
        assert items == [
            {"title": "a.com/y", "description": ""},
            {"title": "b.com/x", "description": ""},
        ]

"""Turn a walked :class:`Package` into display data and JS page shards.

``render_package`` builds the map consumed by the page template; the
rendered page is then stored as ``document.write("...")`` files split at
``</b>`` boundaries so that no shard ends inside a tag.
"""

import html
import json
import posixpath
import re
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from loguru import logger

from gowalker.highlight import format_code
from gowalker.models import Example, Func, Link, Package, Type, Value
from gowalker.security import safe_output_path

SHARD_THRESHOLD = 80000
SHARD_SIZE = 40000

PageRenderer = Callable[[dict], str]

_URL_RE = re.compile(r"(https?://[^\s<>\"']+[^\s<>\"'.,;:!?)])")


# -----------------------------------------------------------------------
# Links and examples
# -----------------------------------------------------------------------


def get_links(pkg: Package) -> list[Link]:
    """Link table for the package's own declarations and its imports."""
    links = [Link(name=t.name, comment=html.escape(t.doc)) for t in pkg.types]
    links.extend(Link(name=f.name, comment=html.escape(f.doc)) for f in pkg.funcs)
    for t in pkg.types:
        links.extend(Link(name=f.name, comment=html.escape(f.doc)) for f in t.funcs)
    for path in [*pkg.imports, *pkg.test_imports]:
        if path != "C":
            links.append(Link(name=posixpath.basename(path) + ".", path=path))
    return links


def get_examples(pkg: Package, type_name: str, name: str) -> list[Example]:
    """Claim the unused examples of ``name`` (or ``type_name.name``)."""
    match = f"{type_name}_{name}" if type_name else name
    claimed = []
    for ex in pkg.examples:
        if ex.used or not ex.name.startswith(match):
            continue
        # A method owns its exact name and suffixes after "_" only.
        if type_name and ex.name != match and not ex.name.startswith(match + "_"):
            continue
        idx = ex.name.find("_")
        # No "_": the name has to match exactly.
        if idx == -1 and len(ex.name) != len(name):
            continue
        # A package-level name only owns suffixes right after itself.
        if idx > -1 and not type_name and idx > len(name):
            continue
        ex.used = True
        claimed.append(ex)
    return claimed


# -----------------------------------------------------------------------
# Doc comments
# -----------------------------------------------------------------------


def _is_heading(block: list[str]) -> bool:
    if len(block) != 1:
        return False
    line = block[0].strip()
    if not line or not line[0].isupper() or line[-1] in ".,;:!?)":
        return False
    return not any(c in line for c in "`'\"()[]{}")


def _inline(text: str) -> str:
    return _URL_RE.sub(r'<a href="\1">\1</a>', html.escape(text))


def comment_to_html(text: str) -> str:
    """Paragraphs, headings and indented ``<pre>`` blocks of a doc comment."""
    if not text:
        return ""
    blocks: list[tuple[str, list[str]]] = []
    for line in text.split("\n"):
        kind = "pre" if line[:1] in (" ", "\t") else "p"
        if not line.strip():
            blocks.append(("gap", []))
        elif blocks and blocks[-1][0] == kind:
            blocks[-1][1].append(line)
        else:
            blocks.append((kind, [line]))

    out = []
    for i, (kind, lines) in enumerate(blocks):
        if kind == "gap":
            continue
        if kind == "pre":
            body = "\n".join(lines)
            dedented = "\n".join(_dedent_lines(body.split("\n")))
            out.append(f"<pre>{html.escape(dedented)}</pre>")
            continue
        prev_gap = i == 0 or blocks[i - 1][0] == "gap"
        next_gap = i + 1 < len(blocks) and blocks[i + 1][0] == "gap"
        if i > 0 and prev_gap and next_gap and _is_heading(lines):
            title = lines[0].strip()
            anchor = "hdr-" + re.sub(r"[^A-Za-z0-9_]", "_", title)
            out.append(f'<h3 id="{anchor}">{html.escape(title)}</h3>')
        else:
            out.append(f"<p>{_inline(' '.join(s.strip() for s in lines))}</p>")
    return "\n".join(out)


def _dedent_lines(lines: list[str]) -> list[str]:
    indents = [len(s) - len(s.lstrip()) for s in lines if s.strip()]
    cut = min(indents) if indents else 0
    return [s[cut:] for s in lines]


# -----------------------------------------------------------------------
# Display map
# -----------------------------------------------------------------------


def doc_coverage(pkg: Package) -> tuple[int, str]:
    """Percentage of exported declarations with docs, and its label."""
    decls: list[Value | Func | Type] = [*pkg.consts, *pkg.vars, *pkg.funcs, *pkg.types]
    for t in pkg.types:
        decls.extend(t.funcs)
        decls.extend(t.methods)
    if not decls:
        return 100, "success"
    percent = sum(1 for d in decls if d.doc) * 100 // len(decls)
    if percent > 80:
        return percent, "success"
    if percent > 50:
        return percent, "warning"
    return percent, "important"


def time_since(ts: int, now: float | None = None) -> str:
    """``3 hours ago`` style label for a UNIX timestamp."""
    delta = int((time.time() if now is None else now) - ts)
    if delta < 0:
        return "just now"
    for unit, size in (
        ("year", 365 * 86400),
        ("month", 30 * 86400),
        ("day", 86400),
        ("hour", 3600),
        ("minute", 60),
    ):
        if delta >= size:
            n = delta // size
            return f"{n} {unit}{'s' if n > 1 else ''} ago"
    return f"{delta} second{'s' if delta != 1 else ''} ago"


def view_file_path(pkg: Package) -> str:
    """Directory URL of the package's files on the hosting service."""
    if not pkg.files or not pkg.files[0].browse_url:
        return ""
    url = pkg.files[0].browse_url
    query = ""
    if "?" in url:
        url, query = url.split("?", 1)
        query = "?" + query
    path = posixpath.dirname(url) + "/" + query
    if "github.com/" in path:
        path = path.replace("blob/", "tree/", 1)
    return path


def _value_view(v: Value, links: list[Link]) -> dict:
    v.fmt_decl = format_code(v.decl, links)
    return {"name": v.name, "doc": comment_to_html(v.doc), "decl": v.fmt_decl, "url": v.url}


def _example_view(ex: Example, links: list[Link]) -> dict:
    return {
        "name": ex.name,
        "doc": comment_to_html(ex.doc),
        "code": format_code(ex.code, links),
        "output": html.escape(ex.output),
    }


def _func_view(
    pkg: Package, f: Func, links: list[Link], type_name: str = ""
) -> dict:
    f.full_name = f"{type_name}_{f.name}" if type_name else f.name
    f.fmt_decl = format_code(f.decl, links)
    f.examples = get_examples(pkg, type_name, f.name)
    return {
        "name": f.name,
        "full_name": f.full_name,
        "doc": comment_to_html(f.doc),
        "decl": f.fmt_decl,
        "url": f.url,
        "code": format_code(f.code, links),
        "examples": [e.name for e in f.examples],
    }


def render_package(pkg: Package) -> dict:
    """Format every declaration of ``pkg`` and build the display map.

    Sets ``fmt_decl``, ``full_name``, claimed examples and the ``has_*``
    flags on the package itself.
    """
    for ex in pkg.examples:
        ex.used = False
    links = get_links(pkg)

    consts = [_value_view(v, links) for v in pkg.consts]
    variables = [_value_view(v, links) for v in pkg.vars]
    funcs = [_func_view(pkg, f, links) for f in pkg.funcs]

    types = []
    for t in pkg.types:
        view = {
            "name": t.name,
            "doc": comment_to_html(t.doc),
            "url": t.url,
            "funcs": [_func_view(pkg, f, links) for f in t.funcs],
            "methods": [_func_view(pkg, m, links, t.name) for m in t.methods],
        }
        t.fmt_decl = format_code(t.decl, links)
        t.examples = get_examples(pkg, "", t.name)
        view["decl"] = t.fmt_decl
        view["examples"] = [e.name for e in t.examples]
        types.append(view)

    example_links = [*links, Link(name=posixpath.basename(pkg.import_path) + ".")]
    examples = [_example_view(ex, example_links) for ex in pkg.examples]

    pkg.has_export = bool(pkg.types or pkg.funcs)
    pkg.has_example = bool(pkg.examples)
    pkg.has_file = bool(pkg.files)
    pkg.has_subdir = bool(pkg.dirs)
    coverage, label = doc_coverage(pkg)

    return {
        "import_path": pkg.import_path,
        "project_root": pkg.project_root,
        "project_name": pkg.project_name,
        "synopsis": pkg.synopsis,
        "doc": comment_to_html(pkg.doc),
        "truncated": pkg.truncated,
        "is_cmd": pkg.is_cmd,
        "consts": consts,
        "vars": variables,
        "funcs": funcs,
        "types": types,
        "examples": examples,
        "notes": [{"uid": n.uid, "body": html.escape(n.body)} for n in pkg.notes],
        "files": [{"name": s.name, "url": s.browse_url} for s in pkg.files],
        "view_file_path": view_file_path(pkg),
        "view_dir": pkg.view_dir,
        "dirs": list(pkg.dirs),
        "imports": list(pkg.imports),
        "has_export": pkg.has_export,
        "has_example": pkg.has_example,
        "has_file": pkg.has_file,
        "has_subdir": pkg.has_subdir,
        "doc_cp": coverage,
        "doc_cp_label": label,
        "secure": pkg.project_root.startswith("github"),
        "utc_time": time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(pkg.created)),
    }


def _section(title: str, body: Iterable[str]) -> str:
    return f"<h2><b>{html.escape(title)}</b></h2>\n" + "\n".join(body)


def _decl_block(item: dict) -> str:
    parts = [f'<h3 id="{html.escape(item["name"])}"><b>{html.escape(item["name"])}</b></h3>']
    parts.append(f"<pre>{item['decl']}</pre>")
    if item.get("doc"):
        parts.append(item["doc"])
    return "\n".join(parts)


def default_page_renderer(data: dict) -> str:
    """Plain HTML page for the display map, used without a template engine."""
    parts = [f"<h1><b>{html.escape(data['import_path'])}</b></h1>", data["doc"]]
    if data["consts"]:
        parts.append(_section("Constants", (_decl_block(v) for v in data["consts"])))
    if data["vars"]:
        parts.append(_section("Variables", (_decl_block(v) for v in data["vars"])))
    if data["funcs"]:
        parts.append(_section("Functions", (_decl_block(f) for f in data["funcs"])))
    for t in data["types"]:
        blocks = [_decl_block(t)]
        blocks.extend(_decl_block(f) for f in t["funcs"])
        blocks.extend(_decl_block(m) for m in t["methods"])
        parts.append(_section(f"type {t['name']}", blocks))
    if data["examples"]:
        parts.append(
            _section(
                "Examples",
                (
                    f"<h3><b>Example{html.escape(e['name'])}</b></h3>\n<pre>{e['code']}</pre>"
                    for e in data["examples"]
                ),
            )
        )
    if data["files"]:
        parts.append(
            _section(
                "Files",
                (f'<a href="{html.escape(f["url"])}">{html.escape(f["name"])}</a>' for f in data["files"]),
            )
        )
    return "\n".join(p for p in parts if p)


# -----------------------------------------------------------------------
# JS shards
# -----------------------------------------------------------------------


def html_to_js(text: str) -> str:
    """Escape ``text`` for a double-quoted JS string literal."""
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\r", "")
        .replace("\n", "\\n")
    )


def split_shards(
    data: str, threshold: int = SHARD_THRESHOLD, size: int = SHARD_SIZE
) -> list[str]:
    """Cut ``data`` into shards of about ``size`` characters.

    Each cut is moved forward (never back) until it lands right after a
    ``</b>``; content under ``threshold`` stays in one shard.
    """
    n = len(data)
    if n < threshold:
        return [data]

    shards = []
    start, end = 0, size
    while True:
        if end >= n:
            end = n
        else:
            while end < n and data[end - 4 : end] != "</b>":
                end += 1
        shards.append(data[start:end])
        if end >= n:
            break
        start, end = end, end + size
    return shards


def shard_paths(js_dir: Path, doc_path: str, count: int) -> list[Path]:
    """``doc_path.js``, ``doc_path-1.js``, ... below ``js_dir``."""
    return [
        safe_output_path(js_dir, doc_path + (f"-{i}" if i else ""), ".js")
        for i in range(count)
    ]


def save_doc_page(js_dir: Path, doc_path: str, page: str) -> int:
    """Write ``page`` as JS shards and return how many files were written."""
    shards = split_shards(html_to_js(page))
    paths = shard_paths(js_dir, doc_path, len(shards))
    for path, shard in zip(paths, shards):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f'document.write("{shard}")\n', encoding="utf-8")
    logger.debug(f"Saved {len(shards)} doc shard(s) for {doc_path}")
    return len(shards)


def save_readme_pages(js_dir: Path, doc_path: str, readme: dict[str, str]) -> list[Path]:
    """One ``doc_path_RM_<lang>.js`` file per README language."""
    written = []
    for lang, text in sorted(readme.items()):
        text = text.removeprefix("\n")
        if not text:
            continue
        path = safe_output_path(js_dir, f"{doc_path}_RM_{lang}", ".js")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f'document.write("{html_to_js(html.escape(text))}")\n', encoding="utf-8")
        written.append(path)
    return written


def build_search_content(paths: Iterable[str]) -> str:
    """JSON list of ``{"title", "description"}`` search items."""
    items = [{"title": p, "description": ""} for p in sorted(paths)]
    return json.dumps(items, ensure_ascii=False)

"""Walk fetched Go sources into the documentation model.

Every ``.go`` file is parsed with tree-sitter-go. A file that does not parse
cleanly aborts the whole build: a package is either documented from all of
its files or not at all.
"""

import re
import textwrap
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from operator import attrgetter

import tree_sitter_go
from loguru import logger
from tree_sitter import Language, Node, Parser

from gowalker.errors import WalkError
from gowalker.models import Example, Func, Note, Package, Source, Type, Value

GO_LANGUAGE = Language(tree_sitter_go.language())

_parser: Parser | None = None

_NOTE_RE = re.compile(r"^BUG\(([^)]+)\):?\s*(.*)", re.DOTALL)
_OUTPUT_RE = re.compile(r"^(?:unordered\s+)?output:", re.IGNORECASE)
_SENTENCE_END_RE = re.compile(r"[.!?](?=\s|$)")


def _get_parser() -> Parser:
    global _parser
    if _parser is None:
        _parser = Parser(GO_LANGUAGE)
    return _parser


def is_exported(name: str) -> bool:
    return bool(name) and name[0].isupper()


def synopsis(doc: str) -> str:
    """First sentence of ``doc`` with whitespace collapsed."""
    text = " ".join(doc.split())
    if text.lower().startswith(("copyright", "author")):
        return ""
    m = _SENTENCE_END_RE.search(text)
    return text[: m.end()] if m else text


def readme_language(name: str) -> str:
    """``README_ZH.md`` -> ``zh``; anything else is English."""
    stem = name.rsplit(".", 1)[0].lower()
    if "_" in stem:
        return stem.rsplit("_", 1)[1] or "en"
    return "en"


@dataclass
class _ParsedFile:
    source: Source
    data: bytes
    root: Node
    package: str
    is_test: bool

    def text(self, node: Node) -> str:
        return self.data[node.start_byte : node.end_byte].decode("utf-8")

    def url(self, node: Node, line_fmt: str) -> str:
        if not self.source.browse_url:
            return ""
        return self.source.browse_url + line_fmt % (node.start_point[0] + 1)


@dataclass
class _Collected:
    consts: list[tuple[Value, bool]] = field(default_factory=list)
    vars: list[tuple[Value, bool]] = field(default_factory=list)
    funcs: list[tuple[_ParsedFile, Node]] = field(default_factory=list)
    methods: list[tuple[_ParsedFile, Node]] = field(default_factory=list)
    types: dict[str, Type] = field(default_factory=dict)
    examples: list[Example] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)
    imports: set[str] = field(default_factory=set)
    test_imports: set[str] = field(default_factory=set)
    doc: str = ""


# -----------------------------------------------------------------------
# Comments
# -----------------------------------------------------------------------


def strip_comment(text: str) -> str:
    """Remove ``//`` or ``/* */`` markers from one comment."""
    if text.startswith("//"):
        line = text[2:]
        return line[1:] if line.startswith(" ") else line
    body = text[2:-2] if text.endswith("*/") else text[2:]
    return textwrap.dedent(body).strip("\n")


def _is_standalone(comment: Node) -> bool:
    prev = comment.prev_sibling
    return prev is None or prev.end_point[0] < comment.start_point[0]


def _doc_comment(pf: _ParsedFile, node: Node) -> str:
    """The comment block that ends on the line right above ``node``."""
    lines: list[str] = []
    line = node.start_point[0]
    prev = node.prev_sibling
    while (
        prev is not None
        and prev.type == "comment"
        and prev.end_point[0] == line - 1
        and _is_standalone(prev)
    ):
        lines.insert(0, strip_comment(pf.text(prev)))
        line = prev.start_point[0]
        prev = prev.prev_sibling
    return "\n".join(lines).strip()


def _comment_groups(pf: _ParsedFile) -> Iterator[str]:
    """Top-level comment groups of a file, markers stripped."""
    group: list[str] = []
    last_line = -2
    for child in pf.root.children:
        if child.type != "comment":
            if group:
                yield "\n".join(group)
                group = []
            continue
        if group and child.start_point[0] != last_line + 1:
            yield "\n".join(group)
            group = []
        group.append(strip_comment(pf.text(child)))
        last_line = child.end_point[0]
    if group:
        yield "\n".join(group)


# -----------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------


def _parse(source: Source) -> _ParsedFile:
    try:
        source.data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WalkError(f"{source.name}: not valid UTF-8: {e}") from e

    tree = _get_parser().parse(source.data)
    root = tree.root_node
    if root.has_error:
        raise WalkError(f"{source.name}: syntax error near line {_error_line(root)}")

    package = ""
    for child in root.named_children:
        if child.type == "package_clause":
            ident = child.named_children[0] if child.named_children else None
            if ident is not None:
                package = source.data[ident.start_byte : ident.end_byte].decode()
            break
    if not package:
        raise WalkError(f"{source.name}: missing package clause")

    return _ParsedFile(
        source=source,
        data=source.data,
        root=root,
        package=package,
        is_test=source.name.endswith("_test.go"),
    )


def _error_line(node: Node) -> int:
    if node.type == "ERROR" or node.is_missing:
        return node.start_point[0] + 1
    for child in node.children:
        if child.has_error:
            return _error_line(child)
    return node.start_point[0] + 1


def _descendants(node: Node, types: tuple[str, ...]) -> Iterator[Node]:
    for child in node.named_children:
        if child.type in types:
            yield child
        else:
            yield from _descendants(child, types)


def _base_type_name(pf: _ParsedFile, node: Node | None) -> str:
    """``*pkg.T[int]`` -> ``""``; ``*T[int]`` -> ``T``."""
    while node is not None:
        if node.type == "type_identifier":
            return pf.text(node)
        if node.type in ("pointer_type", "parenthesized_type"):
            node = node.named_children[0] if node.named_children else None
        elif node.type == "generic_type":
            node = node.child_by_field_name("type")
        else:
            return ""
    return ""


def _result_types(node: Node) -> list[Node]:
    result = node.child_by_field_name("result")
    if result is None:
        return []
    if result.type != "parameter_list":
        return [result]
    types = []
    for param in result.named_children:
        t = param.child_by_field_name("type")
        if t is not None:
            types.append(t)
    return types


def _import_path(pf: _ParsedFile, spec: Node) -> str:
    path = spec.child_by_field_name("path")
    if path is None:
        return ""
    return pf.text(path).strip('"`')


# -----------------------------------------------------------------------
# Declarations
# -----------------------------------------------------------------------


def _func_decl_text(pf: _ParsedFile, node: Node) -> str:
    body = node.child_by_field_name("body")
    end = body.start_byte if body is not None else node.end_byte
    return pf.data[node.start_byte : end].decode("utf-8").strip()


def _make_func(pf: _ParsedFile, node: Node, line_fmt: str) -> Func:
    return Func(
        name=pf.text(node.child_by_field_name("name")),
        doc=_doc_comment(pf, node),
        decl=_func_decl_text(pf, node),
        url=pf.url(node, line_fmt),
        code=pf.text(node),
    )


def _make_value(pf: _ParsedFile, node: Node, line_fmt: str) -> tuple[Value, bool]:
    names: list[str] = []
    for spec in _descendants(node, ("const_spec", "var_spec")):
        names.extend(
            pf.text(n)
            for n in spec.children_by_field_name("name")
            if n.type == "identifier"
        )
    value = Value(
        name=names[0] if names else "",
        doc=_doc_comment(pf, node),
        decl=pf.text(node),
        url=pf.url(node, line_fmt),
    )
    return value, any(is_exported(n) for n in names)


def _collect_types(pf: _ParsedFile, node: Node, line_fmt: str) -> Iterator[Type]:
    specs = [c for c in node.named_children if c.type in ("type_spec", "type_alias")]
    grouped = len(specs) > 1 or any(c.type == "(" for c in node.children)
    for spec in specs:
        name_node = spec.child_by_field_name("name")
        if name_node is None:
            continue
        if grouped:
            doc = _doc_comment(pf, spec) or (
                _doc_comment(pf, node) if len(specs) == 1 else ""
            )
            decl = "type " + pf.text(spec)
        else:
            doc = _doc_comment(pf, node)
            decl = pf.text(node)
        yield Type(
            name=pf.text(name_node),
            doc=doc,
            decl=decl,
            url=pf.url(spec, line_fmt),
        )


def _example_code(pf: _ParsedFile, body: Node) -> tuple[str, str]:
    """Body of an example without braces, and its expected output."""
    comments = list(_descendants(body, ("comment",)))
    output_at = None
    output_lines: list[str] = []
    for i, comment in enumerate(comments):
        text = strip_comment(pf.text(comment)).strip()
        m = _OUTPUT_RE.match(text)
        if m:
            output_at = comment.start_byte
            first = text[m.end() :].strip()
            if first:
                output_lines.append(first)
            output_lines.extend(
                strip_comment(pf.text(c)) for c in comments[i + 1 :]
            )
            break

    end = output_at if output_at is not None else body.end_byte - 1
    code = pf.data[body.start_byte + 1 : end].decode("utf-8")
    code = "\n".join(
        line[1:] if line.startswith("\t") else line for line in code.split("\n")
    )
    return code.strip("\n").rstrip(), "\n".join(output_lines).strip()


def _make_example(pf: _ParsedFile, node: Node) -> Example | None:
    name = pf.text(node.child_by_field_name("name"))
    if not name.startswith("Example"):
        return None
    params = node.child_by_field_name("parameters")
    if params is not None and params.named_children:
        return None
    body = node.child_by_field_name("body")
    if body is None:
        return None
    code, output = _example_code(pf, body)
    return Example(
        name=name[len("Example") :],
        doc=_doc_comment(pf, node),
        code=code,
        output=output,
    )


def _walk_file(pf: _ParsedFile, out: _Collected, line_fmt: str) -> None:
    for node in pf.root.named_children:
        kind = node.type
        if kind == "import_declaration":
            target = out.test_imports if pf.is_test else out.imports
            for spec in _descendants(node, ("import_spec",)):
                path = _import_path(pf, spec)
                if path:
                    target.add(path)
        elif pf.is_test:
            if kind == "function_declaration":
                example = _make_example(pf, node)
                if example is not None:
                    out.examples.append(example)
        elif kind == "package_clause":
            doc = _doc_comment(pf, node)
            if len(doc) > len(out.doc):
                out.doc = doc
        elif kind == "function_declaration":
            out.funcs.append((pf, node))
        elif kind == "method_declaration":
            out.methods.append((pf, node))
        elif kind == "type_declaration":
            for t in _collect_types(pf, node, line_fmt):
                out.types.setdefault(t.name, t)
        elif kind in ("const_declaration", "var_declaration"):
            value, exported = _make_value(pf, node, line_fmt)
            target = out.consts if kind == "const_declaration" else out.vars
            target.append((value, exported))

    if not pf.is_test:
        for group in _comment_groups(pf):
            m = _NOTE_RE.match(group)
            if m:
                out.notes.append(Note(uid=m.group(1), body=" ".join(m.group(2).split())))


def _split(items: Iterable, exported: Callable) -> tuple[list, list]:
    pub, priv = [], []
    for item in items:
        (pub if exported(item) else priv).append(item)
    return pub, priv


def build(
    sources: list[Source],
    import_path: str,
    *,
    line_fmt: str = "#L%d",
    max_doc_length: int = 32 * 1024,
) -> Package:
    """Parse ``sources`` and build the documentation model.

    README files fill ``Package.readme``; every other non-Go file is ignored.
    """
    pkg = Package(import_path=import_path)
    parsed: list[_ParsedFile] = []

    for source in sorted(sources, key=lambda s: s.name):
        if source.name.lower().startswith("readme"):
            lang = readme_language(source.name)
            if lang not in pkg.readme:
                pkg.readme[lang] = source.data.decode("utf-8", errors="replace")
            continue
        if not source.name.endswith(".go"):
            continue
        parsed.append(_parse(source))

    main_files = [pf for pf in parsed if not pf.is_test]
    names = {pf.package for pf in main_files}
    if len(names) > 1:
        raise WalkError(
            f"{import_path}: multiple packages {', '.join(sorted(names))}"
        )
    pkg.name = names.pop() if names else ""
    for pf in parsed:
        if pf.is_test and pkg.name and pf.package not in (pkg.name, pkg.name + "_test"):
            raise WalkError(
                f"{import_path}: {pf.source.name} declares package {pf.package}"
            )

    collected = _Collected()
    for pf in parsed:
        _walk_file(pf, collected, line_fmt)

    types = collected.types
    free_funcs: list[Func] = []
    for pf, node in collected.funcs:
        fn = _make_func(pf, node, line_fmt)
        owner = None
        for result in _result_types(node):
            base = _base_type_name(pf, result)
            if base in types:
                owner = types[base]
                break
        if owner is None:
            free_funcs.append(fn)
        elif is_exported(fn.name):
            owner.funcs.append(fn)
        else:
            owner.ifuncs.append(fn)

    for pf, node in collected.methods:
        fn = _make_func(pf, node, line_fmt)
        receiver = node.child_by_field_name("receiver")
        param = receiver.named_children[0] if receiver and receiver.named_children else None
        base = _base_type_name(pf, param.child_by_field_name("type") if param else None)
        owner = types.get(base)
        if owner is None:
            logger.debug(f"{import_path}: method {fn.name} on unknown type {base!r}")
            continue
        (owner.methods if is_exported(fn.name) else owner.imethods).append(fn)

    by_name = attrgetter("name")
    for t in types.values():
        for attr in ("funcs", "ifuncs", "methods", "imethods"):
            getattr(t, attr).sort(key=by_name)

    pkg.consts, pkg.iconsts = _split_values(collected.consts)
    pkg.vars, pkg.ivars = _split_values(collected.vars)
    funcs, ifuncs = _split(free_funcs, lambda f: is_exported(f.name))
    pkg.funcs = sorted(funcs, key=by_name)
    pkg.ifuncs = sorted(ifuncs, key=by_name)
    exported_types, internal_types = _split(types.values(), lambda t: is_exported(t.name))
    pkg.types = sorted(exported_types, key=by_name)
    pkg.itypes = sorted(internal_types, key=by_name)
    pkg.examples = sorted(collected.examples, key=by_name)
    pkg.notes = collected.notes

    doc = collected.doc
    if len(doc) > max_doc_length:
        doc = doc[:max_doc_length]
        pkg.truncated = True
    pkg.doc = doc
    pkg.synopsis = synopsis(doc)
    pkg.is_cmd = pkg.name == "main"

    pkg.files = [_strip_data(pf.source) for pf in parsed if not pf.is_test]
    pkg.test_files = [_strip_data(pf.source) for pf in parsed if pf.is_test]
    pkg.imports = sorted(collected.imports)
    pkg.test_imports = sorted(collected.test_imports - {import_path})

    logger.debug(
        f"Walked {import_path}: {len(pkg.funcs)} funcs, {len(pkg.types)} types, "
        f"{len(pkg.examples)} examples"
    )
    return pkg


def _split_values(values: list[tuple[Value, bool]]) -> tuple[list[Value], list[Value]]:
    pub = [v for v, exported in values if exported]
    priv = [v for v, exported in values if not exported]
    return pub, priv


def _strip_data(source: Source) -> Source:
    return Source(name=source.name, browse_url=source.browse_url, raw_url=source.raw_url)

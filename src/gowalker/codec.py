"""Flatten a :class:`Package` into text columns and back.

New rows use typed JSON records: one JSON document per column, keys sorted
and separators fixed so that encoding the same package twice gives the same
bytes. Transient fields (``Source.data``, ``Example.used``) are never
written.

Rows written by the old crawler use a delimiter scheme (``&V#``, ``&F#``,
``&T#``, ``&M#``, ``&$#``, ``&##``) with base32-encoded code bodies. The
``*_legacy`` functions read and write that format. Every list in it ends
with a terminator, so decoders always drop the last split element.

Snapshots are the JSON columns compressed with zlib behind a magic header.
"""

import base64
import json
import zlib
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from loguru import logger

from gowalker.errors import DocError
from gowalker.models import Example, Func, Note, Package, Source, Type, Value

FORMAT_VERSION = 1
SNAPSHOT_MAGIC = b"GWSNAP1\n"

_TRANSIENT = frozenset({"used", "data"})

# Package attributes stored in their own column; everything else goes to "info".
_LIST_COLUMNS = (
    "consts",
    "iconsts",
    "vars",
    "ivars",
    "funcs",
    "ifuncs",
    "types",
    "itypes",
    "examples",
    "notes",
    "files",
    "test_files",
    "imports",
    "test_imports",
    "dirs",
    "readme",
)


@dataclass
class EncodedPackage:
    """Text columns of one encoded package."""

    info: str = ""
    doc: str = ""
    consts: str = ""
    iconsts: str = ""
    vars: str = ""
    ivars: str = ""
    funcs: str = ""
    ifuncs: str = ""
    types: str = ""
    itypes: str = ""
    examples: str = ""
    notes: str = ""
    files: str = ""
    test_files: str = ""
    imports: str = ""
    test_imports: str = ""
    dirs: str = ""
    readme: str = ""

    @classmethod
    def column_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]


def _dumps(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _strip_transient(obj):
    if isinstance(obj, dict):
        return {k: _strip_transient(v) for k, v in obj.items() if k not in _TRANSIENT}
    if isinstance(obj, list):
        return [_strip_transient(v) for v in obj]
    return obj


def encode(pkg: Package) -> EncodedPackage:
    """Encode every persisted field of ``pkg``."""
    data = _strip_transient(asdict(pkg))
    info = {
        k: v for k, v in data.items() if k not in _LIST_COLUMNS and k != "doc"
    }
    info["format"] = FORMAT_VERSION
    columns = {name: _dumps(data[name]) for name in _LIST_COLUMNS}
    return EncodedPackage(info=_dumps(info), doc=pkg.doc, **columns)


# -----------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------


def _example(d: dict) -> Example:
    return Example(**d)


def _func(d: dict) -> Func:
    return Func(**{**d, "examples": [_example(e) for e in d.get("examples", [])]})


def _type(d: dict) -> Type:
    return Type(
        **{
            **d,
            "funcs": [_func(f) for f in d.get("funcs", [])],
            "ifuncs": [_func(f) for f in d.get("ifuncs", [])],
            "methods": [_func(f) for f in d.get("methods", [])],
            "imethods": [_func(f) for f in d.get("imethods", [])],
            "examples": [_example(e) for e in d.get("examples", [])],
        }
    )


def _loads(text: str, default):
    return json.loads(text) if text else default


def decode(columns: EncodedPackage) -> Package:
    """Rebuild a :class:`Package` from :func:`encode` output."""
    try:
        info = _loads(columns.info, {})
        version = info.pop("format", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise DocError(f"unsupported package format {version}")

        def items(name: str) -> list:
            return _loads(getattr(columns, name), [])

        return Package(
            **info,
            doc=columns.doc,
            consts=[Value(**v) for v in items("consts")],
            iconsts=[Value(**v) for v in items("iconsts")],
            vars=[Value(**v) for v in items("vars")],
            ivars=[Value(**v) for v in items("ivars")],
            funcs=[_func(f) for f in items("funcs")],
            ifuncs=[_func(f) for f in items("ifuncs")],
            types=[_type(t) for t in items("types")],
            itypes=[_type(t) for t in items("itypes")],
            examples=[_example(e) for e in items("examples")],
            notes=[Note(**n) for n in items("notes")],
            files=[Source(**s) for s in items("files")],
            test_files=[Source(**s) for s in items("test_files")],
            imports=items("imports"),
            test_imports=items("test_imports"),
            dirs=items("dirs"),
            readme=_loads(columns.readme, {}),
        )
    except (ValueError, TypeError) as e:
        raise DocError(f"corrupt package record: {e}") from e


# -----------------------------------------------------------------------
# Legacy delimiter format
# -----------------------------------------------------------------------

LIST_SEP = "&$#"
VALUE_SEP = "&V#"
FUNC_SEP = "&F#"
TYPE_SEP = "&T#"
METHOD_SEP = "&M#"
TYPE_END = "&##"
EXAMPLE_SEP = "&E#"


def _b32encode(text: str) -> str:
    return base64.b32encode(text.encode("utf-8")).decode("ascii")


def _b32decode(text: str) -> str:
    if not text:
        return ""
    return base64.b32decode(text).decode("utf-8", errors="replace")


def _records(text: str, sep: str) -> list[str]:
    """Split on ``sep`` and drop the trailing terminator element."""
    return text.split(sep)[:-1]


def _field(parts: list[str], i: int) -> str:
    return parts[i] if i < len(parts) else ""


def encode_legacy_values(values: list[Value]) -> str:
    return "".join(
        VALUE_SEP.join((v.name, v.doc, v.decl, v.url)) + LIST_SEP for v in values
    )


def decode_legacy_values(text: str) -> list[Value]:
    out = []
    for record in _records(text, LIST_SEP):
        p = record.split(VALUE_SEP)
        out.append(Value(name=p[0], doc=_field(p, 1), decl=_field(p, 2), url=_field(p, 3)))
    return out


def _encode_func(f: Func) -> str:
    return FUNC_SEP.join((f.name, f.doc, f.decl, f.url, _b32encode(f.code)))


def _decode_func(record: str) -> Func:
    p = record.split(FUNC_SEP)
    return Func(
        name=p[0],
        doc=_field(p, 1),
        decl=_field(p, 2),
        url=_field(p, 3),
        code=_b32decode(_field(p, 4)),
    )


def encode_legacy_funcs(funcs: list[Func]) -> str:
    return "".join(_encode_func(f) + LIST_SEP for f in funcs)


def decode_legacy_funcs(text: str) -> list[Func]:
    return [_decode_func(r) for r in _records(text, LIST_SEP)]


def _encode_members(funcs: list[Func]) -> str:
    return "".join(_encode_func(f) + METHOD_SEP for f in funcs)


def encode_legacy_types(types: list[Type]) -> str:
    parts = []
    for t in types:
        parts.append(TYPE_SEP.join((t.name, t.doc, t.decl, t.url)) + LIST_SEP)
        parts.append(_encode_members(t.funcs) + LIST_SEP)
        parts.append(_encode_members(t.ifuncs) + LIST_SEP)
        parts.append(_encode_members(t.methods) + LIST_SEP)
        parts.append(_encode_members(t.imethods) + TYPE_END)
    return "".join(parts)


def decode_legacy_types(text: str) -> list[Type]:
    out = []
    for record in _records(text, TYPE_END):
        sections = record.split(LIST_SEP)
        head = sections[0].split(TYPE_SEP)
        t = Type(name=head[0], doc=_field(head, 1), decl=_field(head, 2), url=_field(head, 3))
        members = [
            [_decode_func(m) for m in _records(_field(sections, i), METHOD_SEP)]
            for i in range(1, 5)
        ]
        t.funcs, t.ifuncs, t.methods, t.imethods = members
        out.append(t)
    return out


def encode_legacy_examples(examples: list[Example]) -> str:
    return "".join(
        EXAMPLE_SEP.join((e.name, e.doc, _b32encode(e.code), e.output)) + LIST_SEP
        for e in examples
    )


def decode_legacy_examples(text: str) -> list[Example]:
    out = []
    for record in _records(text, LIST_SEP):
        p = record.split(EXAMPLE_SEP)
        out.append(
            Example(
                name=p[0],
                doc=_field(p, 1),
                code=_b32decode(_field(p, 2)),
                output=_field(p, 3),
            )
        )
    return out


def encode_legacy_strings(items: list[str]) -> str:
    return "".join(s + LIST_SEP for s in items)


def decode_legacy_strings(text: str) -> list[str]:
    return _records(text, LIST_SEP)


def encode_legacy(pkg: Package) -> EncodedPackage:
    """Encode ``pkg`` in the old delimiter format (notes and files as names)."""
    info = _strip_transient(asdict(pkg.info()))
    info["format"] = FORMAT_VERSION
    return EncodedPackage(
        info=_dumps(info),
        doc=pkg.doc,
        consts=encode_legacy_values(pkg.consts),
        iconsts=encode_legacy_values(pkg.iconsts),
        vars=encode_legacy_values(pkg.vars),
        ivars=encode_legacy_values(pkg.ivars),
        funcs=encode_legacy_funcs(pkg.funcs),
        ifuncs=encode_legacy_funcs(pkg.ifuncs),
        types=encode_legacy_types(pkg.types),
        itypes=encode_legacy_types(pkg.itypes),
        examples=encode_legacy_examples(pkg.examples),
        notes=encode_legacy_strings([f"{n.uid}: {n.body}" for n in pkg.notes]),
        files=encode_legacy_strings([s.name for s in pkg.files]),
        test_files=encode_legacy_strings([s.name for s in pkg.test_files]),
        imports=encode_legacy_strings(pkg.imports),
        test_imports=encode_legacy_strings(pkg.test_imports),
        dirs=encode_legacy_strings(pkg.dirs),
    )


def decode_legacy(columns: EncodedPackage) -> Package:
    """Read a row written in the old delimiter format."""
    info = _loads(columns.info, {})
    info.pop("format", None)
    notes = []
    for raw in decode_legacy_strings(columns.notes):
        uid, _, body = raw.partition(": ")
        notes.append(Note(uid=uid, body=body))
    return Package(
        **info,
        doc=columns.doc,
        consts=decode_legacy_values(columns.consts),
        iconsts=decode_legacy_values(columns.iconsts),
        vars=decode_legacy_values(columns.vars),
        ivars=decode_legacy_values(columns.ivars),
        funcs=decode_legacy_funcs(columns.funcs),
        ifuncs=decode_legacy_funcs(columns.ifuncs),
        types=decode_legacy_types(columns.types),
        itypes=decode_legacy_types(columns.itypes),
        examples=decode_legacy_examples(columns.examples),
        notes=notes,
        files=[Source(name=n) for n in decode_legacy_strings(columns.files)],
        test_files=[Source(name=n) for n in decode_legacy_strings(columns.test_files)],
        imports=decode_legacy_strings(columns.imports),
        test_imports=decode_legacy_strings(columns.test_imports),
        dirs=decode_legacy_strings(columns.dirs),
    )


# -----------------------------------------------------------------------
# Snapshots
# -----------------------------------------------------------------------


def dumps_snapshot(pkg: Package) -> bytes:
    payload = _dumps(asdict(encode(pkg))).encode("utf-8")
    return SNAPSHOT_MAGIC + zlib.compress(payload)


def loads_snapshot(blob: bytes) -> Package:
    if not blob.startswith(SNAPSHOT_MAGIC):
        raise DocError("not a package snapshot")
    try:
        payload = zlib.decompress(blob[len(SNAPSHOT_MAGIC) :])
        columns = EncodedPackage(**json.loads(payload))
    except (zlib.error, ValueError, TypeError) as e:
        raise DocError(f"corrupt package snapshot: {e}") from e
    return decode(columns)


def dump_snapshot(pkg: Package, path: Path) -> None:
    """Write ``pkg`` to ``path`` atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(dumps_snapshot(pkg))
    tmp.replace(path)
    logger.debug(f"Snapshot written: {path}")


def load_snapshot(path: Path) -> Package:
    return loads_snapshot(path.read_bytes())

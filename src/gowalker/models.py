"""Documentation model built by the walker and persisted by the codec."""

from dataclasses import dataclass, field, fields


@dataclass
class Value:
    """A const or var declaration group."""

    name: str
    doc: str = ""
    decl: str = ""
    fmt_decl: str = ""
    url: str = ""


@dataclass
class Example:
    """An ``ExampleXxx`` function from a test file.

    ``used`` only lives for one render pass: an example is claimed by at most
    one declaration and is never persisted.
    """

    name: str
    doc: str = ""
    code: str = ""
    output: str = ""
    used: bool = field(default=False, compare=False)


@dataclass
class Func:
    """A function or method."""

    name: str
    doc: str = ""
    decl: str = ""
    fmt_decl: str = ""
    url: str = ""
    code: str = ""
    full_name: str = ""
    examples: list[Example] = field(default_factory=list)


@dataclass
class Type:
    """A type declaration with the functions and methods attached to it."""

    name: str
    doc: str = ""
    decl: str = ""
    fmt_decl: str = ""
    url: str = ""
    funcs: list[Func] = field(default_factory=list)
    ifuncs: list[Func] = field(default_factory=list)
    methods: list[Func] = field(default_factory=list)
    imethods: list[Func] = field(default_factory=list)
    examples: list[Example] = field(default_factory=list)


@dataclass
class Note:
    """A ``BUG(uid): body`` marker found in a comment."""

    uid: str
    body: str


@dataclass
class Source:
    """A fetched file. ``data`` is dropped once the walker is done."""

    name: str
    browse_url: str = ""
    raw_url: str = ""
    data: bytes = field(default=b"", compare=False, repr=False)


@dataclass
class Link:
    """Cross-reference entry used by the highlighter."""

    name: str
    path: str = ""
    comment: str = ""


@dataclass
class PkgInfo:
    """Summary row kept by the store for every known package."""

    import_path: str
    id: int = 0
    project_name: str = ""
    vcs: str = ""
    synopsis: str = ""
    is_cmd: bool = False
    etag: str = ""
    created: int = 0
    viewed: int = 0
    views: int = 0
    rank: int = 0
    stars: int = 0
    imported_num: int = 0
    import_pid: str = ""
    js_num: int = 0


@dataclass
class Package:
    """Root aggregate for one import path at one revision."""

    import_path: str
    id: int = 0
    name: str = ""
    project_root: str = ""
    project_name: str = ""
    project_url: str = ""
    vcs: str = ""
    tag: str = ""
    etag: str = ""
    view_dir: str = ""
    created: int = 0
    viewed: int = 0
    views: int = 0
    rank: int = 0
    stars: int = 0
    imported_num: int = 0
    import_pid: str = ""
    js_num: int = 0

    synopsis: str = ""
    doc: str = ""
    truncated: bool = False
    is_cmd: bool = False
    has_subdir: bool = False
    has_file: bool = False
    has_export: bool = False
    has_example: bool = False

    consts: list[Value] = field(default_factory=list)
    iconsts: list[Value] = field(default_factory=list)
    vars: list[Value] = field(default_factory=list)
    ivars: list[Value] = field(default_factory=list)
    funcs: list[Func] = field(default_factory=list)
    ifuncs: list[Func] = field(default_factory=list)
    types: list[Type] = field(default_factory=list)
    itypes: list[Type] = field(default_factory=list)
    examples: list[Example] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)

    files: list[Source] = field(default_factory=list)
    test_files: list[Source] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)
    test_imports: list[str] = field(default_factory=list)
    dirs: list[str] = field(default_factory=list)
    readme: dict[str, str] = field(default_factory=dict)

    def info(self) -> PkgInfo:
        """Project the summary fields into a :class:`PkgInfo`."""
        names = {f.name for f in fields(PkgInfo)}
        return PkgInfo(**{n: getattr(self, n) for n in names})

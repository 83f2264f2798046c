"""Syntax highlighting and cross-linking for Go source fragments.

``format_code`` turns raw Go text into HTML: keywords get a class span,
identifiers found in the link table become anchors, strings and comments
are wrapped as a whole, and bare identifiers followed by a space become
anchor targets.

Scanning is a small state machine (:class:`State`) that yields a lazy
stream of :class:`Token` values; rendering is a separate pass over that
stream.
"""

import html
from collections.abc import Iterator, Sequence
from enum import Enum
from typing import NamedTuple

from gowalker.models import Link

# Span class per reserved word. ret + key + "defer" cover the 25 Go keywords.
KEYWORD_CLASSES: dict[str, str] = {
    **dict.fromkeys(("return", "break"), "ret"),
    **dict.fromkeys(
        (
            "case",
            "chan",
            "const",
            "continue",
            "default",
            "else",
            "fallthrough",
            "for",
            "func",
            "go",
            "goto",
            "if",
            "import",
            "interface",
            "map",
            "package",
            "range",
            "select",
            "struct",
            "switch",
            "type",
            "var",
        ),
        "key",
    ),
    **dict.fromkeys(("true", "false", "nil", "iota"), "boo"),
    **dict.fromkeys(
        (
            "append",
            "cap",
            "clear",
            "close",
            "complex",
            "copy",
            "defer",
            "delete",
            "imag",
            "len",
            "make",
            "max",
            "min",
            "new",
            "panic",
            "print",
            "println",
            "real",
            "recover",
        ),
        "bui",
    ),
}

_QUOTES = frozenset("'\"`")


class State(Enum):
    SCANNING = "scanning"
    IN_STRING = "string"
    IN_LINE_COMMENT = "line_comment"
    IN_BLOCK_COMMENT = "block_comment"


class TokenKind(Enum):
    WORD = "word"
    STRING = "string"
    COMMENT = "comment"


class Token(NamedTuple):
    """One scanned run.

    For ``WORD`` tokens ``text`` is the (possibly empty) word and ``tail`` the
    single character that ended it. String and comment tokens carry their
    full text including delimiters and an empty tail.
    """

    kind: TokenKind
    text: str
    tail: str = ""


def _is_word_char(code: str, i: int) -> bool:
    c = code[i]
    if c.isascii() and (c.isalnum() or c == "."):
        return True
    # "_" joins a word unless it opens one after a space.
    return c == "_" and i > 0 and code[i - 1] != " "


def _escaped(code: str, i: int, start: int) -> bool:
    """Whether the quote at ``i`` is escaped by a backslash."""
    if i - 1 <= start or code[i - 1] != "\\":
        return False
    return not (i - 2 > start and code[i - 2] == "\\")


def tokenize(code: str) -> Iterator[Token]:
    """Scan ``code`` into words, strings and comments."""
    state = State.SCANNING
    quote = ""
    start = 0
    i = 0
    n = len(code)

    while i < n:
        c = code[i]

        if state is State.SCANNING:
            if _is_word_char(code, i):
                i += 1
                continue
            if c in _QUOTES:
                if i > start:
                    yield Token(TokenKind.WORD, code[start:i])
                state, quote, start = State.IN_STRING, c, i
            elif c == "/" and i + 1 < n and code[i + 1] in "/*":
                if i > start:
                    yield Token(TokenKind.WORD, code[start:i])
                if code[i + 1] == "/":
                    state = State.IN_LINE_COMMENT
                else:
                    state = State.IN_BLOCK_COMMENT
                start = i
                i += 1
            else:
                yield Token(TokenKind.WORD, code[start:i], c)
                start = i + 1

        elif state is State.IN_STRING:
            if c == quote and (quote == "`" or not _escaped(code, i, start)):
                yield Token(TokenKind.STRING, code[start : i + 1])
                state, start = State.SCANNING, i + 1

        elif state is State.IN_LINE_COMMENT:
            if c == "\n":
                yield Token(TokenKind.COMMENT, code[start : i + 1])
                state, start = State.SCANNING, i + 1

        elif c == "/" and code[i - 1] == "*" and i - start >= 3:
            yield Token(TokenKind.COMMENT, code[start : i + 1])
            state, start = State.SCANNING, i + 1

        i += 1

    if start < n:
        if state is State.SCANNING:
            yield Token(TokenKind.WORD, code[start:])
        elif state is State.IN_STRING:
            yield Token(TokenKind.STRING, code[start:])
        else:
            yield Token(TokenKind.COMMENT, code[start:])


def find_link(word: str, links: Sequence[Link]) -> Link | None:
    """Look ``word`` up in the link table.

    A qualified ``pkg.Name`` matches the import link named ``pkg.`` and
    points at ``Name`` inside that package.
    """
    left, dot, right = word.partition(".")
    for link in links:
        if not dot:
            if link.name == word:
                return link
        elif link.name == left + dot:
            if link.path:
                return Link(name=word, path=f"/{link.path}#{right}")
            return Link(name=word, path=f"#{right}")
    return None


def _plain(text: str) -> str:
    return html.escape(text, quote=False).replace("\t", "    ")


def _anchor(link: Link) -> str:
    name = html.escape(link.name)
    path = html.escape(link.path)
    if not link.path:
        return f'<a class="int" title="{link.comment}" href="#{name}">{name}</a>'
    if link.path.startswith("#"):
        return f'<a class="ext" title="{link.comment}" href="{path}">{name}</a>'
    return (
        f'<a class="ext" title="{link.comment}" target="_blank" '
        f'href="{path}">{name}</a>'
    )


def render_token(token: Token, links: Sequence[Link]) -> str:
    """Render one token as HTML."""
    if token.kind is TokenKind.STRING:
        return f'<span class="str">{html.escape(token.text)}</span>'
    if token.kind is TokenKind.COMMENT:
        return f'<span class="com">{html.escape(token.text)}</span>'

    word, tail = token.text, token.tail
    if len(word) < 2:
        return _plain(word + tail)

    cls = KEYWORD_CLASSES.get(word)
    if cls:
        return f'<span class="{cls}">{word}</span>{_plain(tail)}'

    link = find_link(word, links)
    if link is not None:
        return _anchor(link) + _plain(tail)
    # Unmatched qualified names stay plain.
    if tail == " " and "." not in word:
        return f'<span id="{html.escape(word)}">{html.escape(word)}</span> '
    return _plain(word + tail)


def format_code(code: str, links: Sequence[Link] = ()) -> str:
    """Highlight ``code`` and link identifiers found in ``links``."""
    if not code:
        return ""
    return "".join(render_token(token, links) for token in tokenize(code))

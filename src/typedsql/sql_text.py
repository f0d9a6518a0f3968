"""Lexical helpers over raw SQL text.

Nothing here parses SQL. The scanner only knows enough about quoting and
comments to find the characters that matter to us: statement-terminating
semicolons, ``?`` and ``?N`` placeholders and ``%`` signs.
"""

import re
from typing import Iterator, NamedTuple

SCANNER = re.compile(
    # single quote strings
    r"(?P<squote>'(?:''|[^'])*')|"
    # double quote identifiers
    r'(?P<dquote>"(?:""|[^"])*")|'
    # one-line comment
    r"(?P<oneline>--[^\n]*)|"
    # multi-line comment
    r"(?P<multiline>/\*.*?\*/)|"
    r"(?P<semicolon>;)|"
    # positional or numbered placeholder
    r"(?P<qmark>\?(?P<qnum>\d*))|"
    r"(?P<percent>%)",
    re.DOTALL,
)
"""Tokens that matter for splitting and placeholder handling"""

_CODE_TOKENS = ("semicolon", "qmark", "percent")


class Segment(NamedTuple):
    text: str
    line: int
    terminated: bool


def _scan(sql: str) -> Iterator[re.Match[str]]:
    for match in SCANNER.finditer(sql):
        if match.lastgroup in _CODE_TOKENS:
            yield match


def strip_comments(sql: str) -> str:
    """Remove ``--`` and ``/* */`` comments, keeping literals intact."""
    out, current = [], 0
    for match in SCANNER.finditer(sql):
        if match.lastgroup in ("oneline", "multiline"):
            out.append(sql[current : match.start()])
            current = match.end()
    out.append(sql[current:])
    return "".join(out)


def split_statements(text: str) -> list[Segment]:
    """Split ``text`` on top-level semicolons.

    Each segment keeps its text verbatim (without the ``;``) and the 1-based
    line on which it starts. A trailing segment containing nothing but
    whitespace and comments is dropped.
    """
    segments: list[Segment] = []
    start = 0
    for match in _scan(text):
        if match.lastgroup != "semicolon":
            continue
        segments.append(
            Segment(text[start : match.start()], _line_of(text, start), True)
        )
        start = match.end()
    tail = text[start:]
    if strip_comments(tail).strip():
        segments.append(Segment(tail, _line_of(text, start), False))
    return segments


def placeholder_indexes(sql: str) -> list[int]:
    """Zero-based parameter index bound at each placeholder, in order.

    Numbering follows SQLite: ``?N`` binds parameter N and a bare ``?`` binds
    one past the largest number used before it.
    """
    indexes, largest = [], 0
    for match in _scan(sql):
        if match.lastgroup != "qmark":
            continue
        number = match.group("qnum")
        index = int(number) if number else largest + 1
        largest = max(largest, index)
        indexes.append(index - 1)
    return indexes


def count_placeholders(sql: str) -> int:
    """Number of parameters the statement binds, counting a reused ``?N`` once."""
    return max(placeholder_indexes(sql), default=-1) + 1


def qmark_to_pyformat(sql: str) -> str:
    """Rewrite ``?`` and ``?N`` placeholders to ``%s`` for psycopg.

    Arguments must then be bound in the order given by
    :func:`placeholder_indexes`.

    psycopg scans the whole query for ``%`` regardless of quoting, so every
    literal ``%`` is doubled, including those inside strings and comments.
    """
    out, current = [], 0
    for match in SCANNER.finditer(sql):
        kind = match.lastgroup
        if kind == "qmark":
            out.append(sql[current : match.start()])
            out.append("%s")
            current = match.end()
        elif kind == "percent":
            out.append(sql[current : match.start()])
            out.append("%%")
            current = match.end()
        elif kind != "semicolon":
            token = match.group()
            if "%" in token:
                out.append(sql[current : match.start()])
                out.append(token.replace("%", "%%"))
                current = match.end()
    out.append(sql[current:])
    return "".join(out)


def leading_keyword(sql: str) -> str:
    """First keyword of the statement, upper-cased, ignoring comments."""
    match = re.match(r"\s*(\w+)", strip_comments(sql))
    return match.group(1).upper() if match else ""


def _line_of(text: str, offset: int) -> int:
    # skip blank lines so the position names the statement's first real line
    while offset < len(text) and text[offset] in " \t\r\n":
        offset += 1
    return text.count("\n", 0, offset) + 1

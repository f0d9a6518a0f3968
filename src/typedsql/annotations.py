"""Parser for SQL files annotated with comment blocks.

Each statement may be preceded by a block of prefixed comment lines::

    -- @name insertUser
    -- @count one
    -- @param name string
    -- @returns id number
    INSERT INTO users(name) VALUES (?) RETURNING id;

The first two lines must be ``name`` and ``count``. ``param`` and
``returns`` lines follow in any order.
"""

import keyword
import logging
from dataclasses import dataclass, field

from typedsql.errors import (
    DuplicateStatementName,
    GenerationError,
    MalformedAnnotation,
    PlaceholderCountMismatch,
    UnknownCardinality,
    UnsupportedType,
)
from typedsql.schema import Cardinality, Parameter, ReturnField, StatementDescriptor
from typedsql.sql_text import count_placeholders, split_statements
from typedsql.type_mapper import map_annotation_type

logger = logging.getLogger("typedsql")

DEFAULT_PREFIX = "-- @"


@dataclass
class ParseReport:
    statements: list[StatementDescriptor] = field(default_factory=list)
    errors: list[GenerationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise self.errors[0]

    def record(self, error: GenerationError, *, strict: bool) -> None:
        if strict:
            raise error
        logger.warning("skipping statement: %s", error)
        self.errors.append(error)

    def add(self, descriptor: StatementDescriptor, *, strict: bool) -> None:
        if any(s.name == descriptor.name for s in self.statements):
            self.record(
                DuplicateStatementName(
                    f"statement name {descriptor.name!r} is already defined",
                    statement=descriptor.name,
                    line=descriptor.line,
                ),
                strict=strict,
            )
            return
        self.statements.append(descriptor)


def is_identifier(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


def annotation_tokens(line: str, prefix: str) -> list[str] | None:
    """Tokens following ``prefix``, or None if the line is not an annotation."""
    stripped = line.lstrip()
    if not stripped.startswith(prefix):
        return None
    return stripped[len(prefix) :].split()


def _is_filler(line: str, prefix: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return True
    return stripped.startswith("--") and annotation_tokens(stripped, prefix) is None


def split_annotation_block(
    text: str, prefix: str
) -> tuple[list[list[str]], str]:
    """Separate the leading annotation lines of ``text`` from its SQL body.

    Blank lines and ordinary ``--`` comments ahead of the block are skipped.
    """
    lines = text.splitlines()
    while lines and _is_filler(lines[0], prefix):
        lines.pop(0)
    block: list[list[str]] = []
    for index, line in enumerate(lines):
        tokens = annotation_tokens(line, prefix)
        if tokens is None:
            return block, "\n".join(lines[index:]).strip()
        block.append(tokens)
    return block, ""


def parse_cardinality(
    token: str, *, statement: str | None = None, line: int | None = None
) -> Cardinality:
    try:
        return Cardinality(token)
    except ValueError:
        allowed = "|".join(c.value for c in Cardinality)
        raise UnknownCardinality(
            f"unknown cardinality {token!r}, expected {allowed}",
            statement=statement,
            line=line,
        ) from None


def parse_fields(
    block: list[list[str]], *, statement: str, line: int | None
) -> tuple[list[Parameter], list[ReturnField]]:
    """Parse ``param`` and ``returns`` lines, keeping declaration order."""
    params: list[Parameter] = []
    returns: list[ReturnField] = []
    for tokens in block:
        kind = tokens[0] if tokens else ""
        if kind not in ("param", "returns"):
            raise MalformedAnnotation(
                f"expected 'param' or 'returns', got {' '.join(tokens)!r}",
                statement=statement,
                line=line,
            )
        if len(tokens) != 3:
            raise MalformedAnnotation(
                f"'{kind}' takes a name and a type, got {' '.join(tokens)!r}",
                statement=statement,
                line=line,
            )
        _, name, type_token = tokens
        if not is_identifier(name):
            raise MalformedAnnotation(
                f"invalid {kind} name {name!r}", statement=statement, line=line
            )
        try:
            scalar = map_annotation_type(type_token)
        except UnsupportedType as e:
            raise UnsupportedType(e.message, statement=statement, line=line) from None
        group = params if kind == "param" else returns
        if any(existing.name == name for existing in group):
            raise MalformedAnnotation(
                f"duplicate {kind} name {name!r}", statement=statement, line=line
            )
        if kind == "param":
            params.append(Parameter(name=name, scalar_type=scalar))
        else:
            returns.append(ReturnField(name=name, scalar_type=scalar))
    return params, returns


def check_placeholders(
    sql: str, params: list[Parameter], *, statement: str, line: int | None
) -> None:
    found = count_placeholders(sql)
    if found != len(params):
        raise PlaceholderCountMismatch(
            f"{len(params)} parameter(s) declared but {found} placeholder(s) found",
            statement=statement,
            line=line,
        )


def parse_statement(
    text: str, *, prefix: str = DEFAULT_PREFIX, line: int | None = None
) -> StatementDescriptor | None:
    """Parse a single ``;``-free segment. Returns None for unannotated SQL."""
    block, sql = split_annotation_block(text, prefix)
    if not block:
        return None
    header = block[:2]
    if len(header[0]) != 2 or header[0][0] != "name":
        raise MalformedAnnotation(
            "annotation block must start with 'name <identifier>'", line=line
        )
    name = header[0][1]
    if not is_identifier(name):
        raise MalformedAnnotation(f"invalid statement name {name!r}", line=line)
    if len(header) < 2 or len(header[1]) != 2 or header[1][0] != "count":
        raise MalformedAnnotation(
            "second annotation line must be 'count <exec|one|many>'",
            statement=name,
            line=line,
        )
    cardinality = parse_cardinality(header[1][1], statement=name, line=line)
    params, returns = parse_fields(block[2:], statement=name, line=line)
    if not sql:
        raise MalformedAnnotation("annotation has no SQL body", statement=name, line=line)
    if cardinality is Cardinality.exec and returns:
        raise MalformedAnnotation(
            "exec statements cannot declare returns", statement=name, line=line
        )
    check_placeholders(sql, params, statement=name, line=line)
    return StatementDescriptor(
        name=name,
        cardinality=cardinality,
        parameters=tuple(params),
        returns=tuple(returns),
        sql=sql,
        line=line,
    )


def parse_annotated(
    text: str, *, prefix: str = DEFAULT_PREFIX, strict: bool = False
) -> ParseReport:
    """Parse every annotated statement in ``text``.

    Statements that fail to parse are skipped and their errors collected on
    the report; with ``strict`` the first failure is raised instead.
    """
    report = ParseReport()
    for segment in split_statements(text):
        try:
            descriptor = parse_statement(segment.text, prefix=prefix, line=segment.line)
        except GenerationError as e:
            report.record(e, strict=strict)
            continue
        if descriptor is None:
            logger.debug("line %d: no annotation block, skipping plain SQL", segment.line)
            continue
        report.add(descriptor, strict=strict)
    return report

"""Infer statement shapes from ``CREATE TABLE`` definitions.

A schema source mixes table definitions with named queries::

    CREATE TABLE users (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        age INTEGER
    );

    -- name: getUsers :many
    SELECT id, name FROM users WHERE age >= ?;

Tables and queries are parsed with sqlglot. Return shapes are looked up in
the table mapping; parameters are anonymous and opaque unless the query
carries explicit ``param`` annotations.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping

import sqlglot
from pydantic import ValidationError
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from typedsql.annotations import (
    DEFAULT_PREFIX,
    ParseReport,
    check_placeholders,
    is_identifier,
    parse_cardinality,
    parse_fields,
    split_annotation_block,
)
from typedsql.errors import GenerationError, MalformedAnnotation, MalformedTableDefinition
from typedsql.schema import (
    Cardinality,
    Column,
    Dialect,
    Parameter,
    ReturnField,
    ScalarType,
    StatementDescriptor,
    Table,
)
from typedsql.sql_text import count_placeholders, split_statements, strip_comments
from typedsql.type_mapper import map_engine_type

logger = logging.getLogger("typedsql")

READ_DIALECTS = {
    Dialect.local_sync: "sqlite",
    Dialect.remote_async: "postgres",
}
"""sqlglot dialect each target engine's SQL is read with"""

CREATE_TABLE = re.compile(r"^\s*CREATE\s+(?:TEMP(?:ORARY)?\s+)?TABLE\b", re.IGNORECASE)
"""Statements handed to the parser as table definitions"""

QUERY_DEF = re.compile(
    r"^[ \t]*--\s*name\s*:\s*(?P<name>\S+)\s*:(?P<cardinality>\S+)[ \t]*$",
    re.MULTILINE,
)
"""Identifies ``-- name: <identifier> :<cardinality>`` markers"""


@dataclass
class SchemaReport(ParseReport):
    tables: dict[str, Table] = field(default_factory=dict)


def _read_dialect(dialect: Dialect | str) -> str:
    return READ_DIALECTS[Dialect(dialect)]


def _is_not_null(column: exp.ColumnDef) -> bool:
    for constraint in column.constraints:
        kind = constraint.args.get("kind")
        if isinstance(kind, exp.NotNullColumnConstraint) and not kind.args.get("allow_null"):
            return True
    return False


def table_from_ddl(
    sql: str, *, dialect: Dialect | str = Dialect.local_sync, line: int | None = None
) -> Table | None:
    """The table a ``CREATE TABLE`` statement defines, or None for other statements.

    Column types keep the spelling of the dialect the SQL is read in.
    Table constraints are ignored; a column is nullable unless declared
    ``NOT NULL``.
    """
    read = _read_dialect(dialect)
    try:
        create = sqlglot.parse_one(sql, read=read)
    except (ParseError, TokenError) as e:
        raise MalformedTableDefinition(f"cannot parse table definition: {e}", line=line) from e
    if not isinstance(create, exp.Create) or str(create.args.get("kind", "")).upper() != "TABLE":
        return None
    schema = create.this
    if not isinstance(schema, exp.Schema):
        # CREATE TABLE ... AS SELECT has no declared columns
        return None
    columns = []
    for definition in schema.expressions:
        if isinstance(definition, (exp.Identifier, exp.Column)):
            # a bare column name, with neither type nor constraints
            columns.append(Column(name=definition.name, engine_type=""))
            continue
        if not isinstance(definition, exp.ColumnDef):
            continue
        kind = definition.args.get("kind")
        columns.append(
            Column(
                name=definition.name,
                engine_type=kind.sql(dialect=read) if kind is not None else "",
                nullable=not _is_not_null(definition),
            )
        )
    name = schema.this.name
    try:
        return Table(name=name, columns=tuple(columns))
    except ValidationError as e:
        message = e.errors()[0]["msg"].removeprefix("Value error, ")
        raise MalformedTableDefinition(message, line=line) from None


def iter_tables(
    text: str, *, dialect: Dialect | str = Dialect.local_sync
) -> Iterator[tuple[Table | None, GenerationError | None]]:
    for segment in split_statements(text):
        if CREATE_TABLE.match(strip_comments(segment.text)) is None:
            continue
        try:
            table = table_from_ddl(segment.text, dialect=dialect, line=segment.line)
        except GenerationError as e:
            yield None, e
            continue
        if table is not None:
            yield table, None


def parse_tables(text: str, *, dialect: Dialect | str = Dialect.local_sync) -> dict[str, Table]:
    """Every table defined in ``text``, keyed by lowercased name."""
    tables = {}
    for table, error in iter_tables(text, dialect=dialect):
        if error is not None:
            raise error
        tables[table.name.lower()] = table
    return tables


def table_fields(table: Table) -> tuple[ReturnField, ...]:
    return tuple(_return_field(column.name, column) for column in table.columns)


def _return_field(name: str, column: Column) -> ReturnField:
    return ReturnField(
        name=name,
        scalar_type=map_engine_type(column.engine_type),
        nullable=column.nullable,
    )


def _source_tables(tree: exp.Expression) -> list[exp.Expression]:
    if isinstance(tree, exp.Select):
        from_clause = tree.find(exp.From)
        if from_clause is None:
            return []
        return [from_clause.this, *(join.this for join in tree.args.get("joins") or [])]
    if isinstance(tree, (exp.Insert, exp.Update, exp.Delete)) and tree.this is not None:
        return [tree.this.find(exp.Table)]
    return []


def _selected(tree: exp.Expression) -> list[exp.Expression] | None:
    if isinstance(tree, exp.Select):
        return tree.expressions
    returning = tree.args.get("returning")
    return returning.expressions if returning is not None else None


def _resolve(column: exp.Column, scope: Mapping[str, Table]) -> Table | None:
    if column.table:
        return scope.get(column.table.lower())
    for table in scope.values():
        if table.column(column.name) is not None:
            return table
    return None


def _is_star(item: exp.Expression) -> bool:
    return isinstance(item, exp.Star) or (
        isinstance(item, exp.Column) and isinstance(item.this, exp.Star)
    )


def infer_returns(
    sql: str, tables: Mapping[str, Table], *, dialect: Dialect | str = Dialect.local_sync
) -> tuple[tuple[ReturnField, ...], str | None]:
    """Infer the record shape a statement produces.

    Returns the fields and, when they are a table's full shape, that table's
    name. Statements whose tables cannot be resolved get an empty (opaque)
    shape.
    """
    try:
        tree = sqlglot.parse_one(sql, read=_read_dialect(dialect))
    except (ParseError, TokenError) as e:
        logger.debug("cannot parse statement, result left opaque: %s", e)
        return (), None
    sources = _source_tables(tree)
    selected = _selected(tree)
    if not sources or not selected or not all(isinstance(s, exp.Table) for s in sources):
        logger.debug("no table or result list found, result left opaque")
        return (), None

    scope: dict[str, Table] = {}
    for source in sources:
        table = tables.get(source.name.lower())
        if table is None:
            logger.debug("unknown table %r, result left opaque", source.name)
            return (), None
        scope[source.alias_or_name.lower()] = table
    primary = tables[sources[0].name.lower()]
    full_shape = table_fields(primary), primary.name

    if len(selected) == 1 and _is_star(selected[0]):
        star = selected[0]
        qualifier = star.table if isinstance(star, exp.Column) else ""
        table = scope.get(qualifier.lower()) if qualifier else None
        if table is None and not qualifier and len(scope) == 1:
            table = primary
        if table is None:
            logger.debug("cannot resolve %r to one table, result left opaque", star.sql())
            return (), None
        return table_fields(table), table.name

    fields = []
    for item in selected:
        target = item.unalias()
        if not isinstance(target, exp.Column) or _is_star(target):
            logger.debug("%r is not a column, falling back to the table shape", item.sql())
            return full_shape
        table = _resolve(target, scope)
        column = table.column(target.name) if table is not None else None
        if column is None:
            logger.debug(
                "%r is not a column of %s, falling back to the table shape",
                item.sql(),
                ", ".join(t.name for t in scope.values()),
            )
            return full_shape
        name = item.alias if isinstance(item, exp.Alias) else column.name
        fields.append(_return_field(name, column))
    if len({f.name for f in fields}) != len(fields):
        logger.debug("result has duplicate column names, result left opaque")
        return (), None
    return tuple(fields), None


def _query_blocks(text: str) -> Iterator[tuple[re.Match[str], str, int]]:
    markers = list(QUERY_DEF.finditer(text))
    for index, marker in enumerate(markers):
        end = markers[index + 1].start() if index + 1 < len(markers) else len(text)
        yield marker, text[marker.end() : end], text.count("\n", 0, marker.start()) + 1


def parse_query(
    marker: re.Match[str],
    body: str,
    tables: Mapping[str, Table],
    *,
    prefix: str = DEFAULT_PREFIX,
    line: int | None = None,
    dialect: Dialect | str = Dialect.local_sync,
) -> StatementDescriptor:
    name = marker.group("name")
    if not is_identifier(name):
        raise MalformedAnnotation(f"invalid statement name {name!r}", line=line)
    cardinality = parse_cardinality(marker.group("cardinality"), statement=name, line=line)
    segments = split_statements(body)
    block, sql = split_annotation_block(segments[0].text, prefix) if segments else ([], "")
    if not sql:
        raise MalformedAnnotation("query has no SQL body", statement=name, line=line)
    params, returns = parse_fields(block, statement=name, line=line)
    if any(tokens[0] == "param" for tokens in block):
        check_placeholders(sql, params, statement=name, line=line)
    else:
        params = [
            Parameter(name=f"p{i}", scalar_type=ScalarType.opaque)
            for i in range(count_placeholders(sql))
        ]
    source_table = None
    if cardinality is Cardinality.exec:
        if returns:
            raise MalformedAnnotation(
                "exec statements cannot declare returns", statement=name, line=line
            )
    elif not any(tokens[0] == "returns" for tokens in block):
        inferred, source_table = infer_returns(sql, tables, dialect=dialect)
        returns = list(inferred)
    return StatementDescriptor(
        name=name,
        cardinality=cardinality,
        parameters=tuple(params),
        returns=tuple(returns),
        sql=sql,
        line=line,
        source_table=source_table,
    )


def parse_schema(
    text: str,
    *,
    tables: Mapping[str, Table] | Iterable[Table] | None = None,
    prefix: str = DEFAULT_PREFIX,
    strict: bool = False,
    dialect: Dialect | str = Dialect.local_sync,
) -> SchemaReport:
    """Parse tables and named queries from a schema source.

    ``tables`` supplies additional known tables, e.g. reflected from a live
    database; definitions found in ``text`` take precedence.
    """
    report = SchemaReport()
    if tables is not None:
        known = tables.values() if isinstance(tables, Mapping) else tables
        report.tables.update({table.name.lower(): table for table in known})
    for table, error in iter_tables(text, dialect=dialect):
        if error is not None:
            report.record(error, strict=strict)
            continue
        report.tables[table.name.lower()] = table
    for marker, body, line in _query_blocks(text):
        try:
            descriptor = parse_query(
                marker, body, report.tables, prefix=prefix, line=line, dialect=dialect
            )
        except GenerationError as e:
            report.record(e, strict=strict)
            continue
        report.add(descriptor, strict=strict)
    return report

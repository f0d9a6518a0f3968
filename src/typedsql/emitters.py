"""Render statement descriptors as Python source.

Two dialects are supported:

* ``local-sync`` targets the standard library ``sqlite3`` module. Arguments
  are bound positionally in the execute call.
* ``remote-async`` targets ``psycopg.AsyncConnection``. Placeholders are
  rewritten to ``%s`` and arguments are bound in an explicit step before the
  awaited execute.

Each dialect supports two calling conventions. ``one-shot`` functions take the
connection on every call. ``prepared`` factories take the connection once and
return a closure.
"""

import keyword
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, NamedTuple, Sequence

from typedsql.errors import DuplicateStatementName, MalformedTableDefinition
from typedsql.schema import (
    CallingConvention,
    Cardinality,
    Dialect,
    StatementDescriptor,
    Table,
)
from typedsql.sql_text import placeholder_indexes, qmark_to_pyformat
from typedsql.type_mapper import map_engine_type, python_annotation
from typedsql.utils import indent, to_pascal_case, to_snake_case

logger = logging.getLogger("typedsql")

DEFAULT_HEADER = "# Generated by typedsql. Do not edit."

OPAQUE_ROW = "dict[str, Any]"


class Names(NamedTuple):
    function: str
    prepare: str
    sql: str
    params: str
    row: str


def names_for(descriptor: StatementDescriptor) -> Names:
    snake = to_snake_case(descriptor.name)
    pascal = to_pascal_case(descriptor.name)
    return Names(
        function=snake,
        prepare=f"prepare_{snake}",
        sql=f"{snake.upper()}_SQL",
        params=f"{pascal}Params",
        row=f"{pascal}Row",
    )


def table_type_name(table: Table | str) -> str:
    return to_pascal_case(table if isinstance(table, str) else table.name)


def sql_literal(sql: str) -> str:
    if '"""' in sql or "\\" in sql or sql.endswith('"'):
        return repr(sql)
    return f'"""\\\n{sql}"""'


def typed_dict(name: str, fields: Sequence[tuple[str, str]]) -> str:
    if all(field.isidentifier() and not keyword.iskeyword(field) for field, _ in fields):
        if not fields:
            return f"class {name}(TypedDict):\n    pass"
        body = "\n".join(f"    {field}: {annotation}" for field, annotation in fields)
        return f"class {name}(TypedDict):\n{body}"
    items = ", ".join(f"{field!r}: {annotation!r}" for field, annotation in fields)
    return f"{name} = TypedDict({name!r}, {{{items}}})"


def result_annotation(descriptor: StatementDescriptor) -> str:
    if descriptor.cardinality is Cardinality.exec:
        return "None"
    row = names_for(descriptor).row if descriptor.returns else OPAQUE_ROW
    if descriptor.cardinality is Cardinality.one:
        return f"{row} | None"
    return f"list[{row}]"


def positional_args(descriptor: StatementDescriptor, order: Sequence[int] | None = None) -> str:
    """Tuple expression binding ``params``, by placeholder ``order`` when given."""
    parameters = descriptor.parameters
    if order is not None:
        parameters = tuple(parameters[index] for index in order)
    if not parameters:
        return "()"
    values = ", ".join(f"params[{p.name!r}]" for p in parameters)
    return f"({values},)"


@dataclass(frozen=True)
class Backend:
    dialect: Dialect
    handle: str
    is_async: bool
    imports: tuple[str, ...]
    helpers: str
    body: Callable[[StatementDescriptor, bool], list[str]]
    setup: Callable[[StatementDescriptor], list[str]]
    process_sql: Callable[[str], str]
    reserved: frozenset[str] = frozenset()
    """Module-level names the imports and helpers bind"""


def _sqlite_body(descriptor: StatementDescriptor, prepared: bool) -> list[str]:
    names = names_for(descriptor)
    call = f"{names.sql}, {positional_args(descriptor)}" if descriptor.parameters else names.sql
    if descriptor.cardinality is Cardinality.exec:
        return [f"db.execute({call})"]
    fetch = "fetchone" if descriptor.cardinality is Cardinality.one else "fetchall"
    return [
        "with closing(db.cursor()) as cur:",
        "    cur.row_factory = _dict_row",
        f"    cur.execute({call})",
        f"    return cur.{fetch}()",
    ]


def _sqlite_setup(descriptor: StatementDescriptor) -> list[str]:
    return [f"_compile(db, {names_for(descriptor).sql}, {len(descriptor.parameters)})"]


def _psycopg_body(descriptor: StatementDescriptor, prepared: bool) -> list[str]:
    names = names_for(descriptor)
    prepare = ", prepare=True" if prepared else ""
    order = placeholder_indexes(descriptor.sql)
    lines = [f"args = {positional_args(descriptor, order)}"]
    if descriptor.cardinality is Cardinality.exec:
        return [*lines, f"await db.execute({names.sql}, args{prepare})"]
    fetch = "fetchone" if descriptor.cardinality is Cardinality.one else "fetchall"
    return [
        *lines,
        "async with db.cursor(row_factory=dict_row) as cur:",
        f"    await cur.execute({names.sql}, args{prepare})",
        f"    return await cur.{fetch}()",
    ]


_SQLITE_HELPERS = '''\
def _dict_row(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    return {column[0]: value for column, value in zip(cursor.description, row)}


def _compile(db: sqlite3.Connection, sql: str, arity: int) -> None:
    db.execute(f"EXPLAIN {sql}", (None,) * arity)'''

BACKENDS: dict[Dialect, Backend] = {
    Dialect.local_sync: Backend(
        dialect=Dialect.local_sync,
        handle="sqlite3.Connection",
        is_async=False,
        imports=(
            "import sqlite3",
            "from collections.abc import Callable",
            "from contextlib import closing",
            "from typing import Any, TypedDict",
        ),
        helpers=_SQLITE_HELPERS,
        body=_sqlite_body,
        setup=_sqlite_setup,
        process_sql=lambda sql: sql,
        reserved=frozenset(
            {"sqlite3", "Callable", "closing", "Any", "TypedDict", "_dict_row", "_compile"}
        ),
    ),
    Dialect.remote_async: Backend(
        dialect=Dialect.remote_async,
        handle="AsyncConnection[Any]",
        is_async=True,
        imports=(
            "from collections.abc import Awaitable, Callable",
            "from typing import Any, TypedDict",
            "",
            "from psycopg import AsyncConnection",
            "from psycopg.rows import dict_row",
        ),
        helpers="",
        body=_psycopg_body,
        setup=lambda descriptor: [],
        process_sql=qmark_to_pyformat,
        reserved=frozenset(
            {"Awaitable", "Callable", "Any", "TypedDict", "AsyncConnection", "dict_row"}
        ),
    ),
}


def get_backend(dialect: Dialect | str) -> Backend:
    try:
        return BACKENDS[Dialect(dialect)]
    except ValueError:
        available = ", ".join(d.value for d in BACKENDS)
        raise KeyError(f"Unknown dialect {dialect!r}. Available: {available}") from None


def emit_sql_constant(descriptor: StatementDescriptor, dialect: Dialect | str) -> str:
    backend = get_backend(dialect)
    sql = backend.process_sql(descriptor.sql)
    return f"{names_for(descriptor).sql} = {sql_literal(sql)}"


def emit_table(table: Table) -> str:
    fields = [
        (column.name, python_annotation(map_engine_type(column.engine_type), column.nullable))
        for column in table.columns
    ]
    return typed_dict(table_type_name(table), fields)


def emit_shapes(
    descriptor: StatementDescriptor, tables: Mapping[str, Table] | None = None
) -> str:
    """Record types for a statement's parameters and result row."""
    names = names_for(descriptor)
    blocks = []
    if descriptor.parameters:
        blocks.append(
            typed_dict(
                names.params,
                [(p.name, python_annotation(p.scalar_type)) for p in descriptor.parameters],
            )
        )
    if descriptor.returns:
        source = descriptor.source_table
        if source is not None and tables is not None and source.lower() in tables:
            blocks.append(f"{names.row} = {table_type_name(tables[source.lower()])}")
        else:
            blocks.append(
                typed_dict(
                    names.row,
                    [
                        (r.name, python_annotation(r.scalar_type, r.nullable))
                        for r in descriptor.returns
                    ],
                )
            )
    return "\n\n\n".join(blocks)


def emit(
    descriptor: StatementDescriptor,
    dialect: Dialect | str,
    convention: CallingConvention | str,
) -> str:
    """Source text of one typed accessor.

    The text refers to the statement's SQL constant and record types, which
    :func:`emit_module` places ahead of it.
    """
    backend = get_backend(dialect)
    convention = CallingConvention(convention)
    names = names_for(descriptor)
    result = result_annotation(descriptor)
    params = f"params: {names.params}" if descriptor.parameters else ""
    prefix = "async def" if backend.is_async else "def"

    if convention is CallingConvention.one_shot:
        arguments = f"db: {backend.handle}" + (f", {params}" if params else "")
        lines = [f"{prefix} {names.function}({arguments}) -> {result}:"]
        lines += indent(backend.body(descriptor, False))
        return "\n".join(lines)

    returned = f"Awaitable[{result}]" if backend.is_async else result
    callable_type = f"Callable[[{names.params if params else ''}], {returned}]"
    lines = [f"def {names.prepare}(db: {backend.handle}) -> {callable_type}:"]
    lines += indent(backend.setup(descriptor))
    lines += indent([f"{prefix} run({params}) -> {result}:"])
    lines += indent(backend.body(descriptor, True), 2)
    lines += ["", "    return run"]
    return "\n".join(lines)


SHARED_NAMES = frozenset({"annotations", "dict", "list", "tuple", "zip", "str", "float", "bytes"})
"""Names every generated module refers to, whichever the dialect"""


class Namespace:
    """Module-level names bound so far in a generated module, and their owners."""

    def __init__(self, dialect: Dialect | str):
        backend = get_backend(dialect)
        self._owners = {name: "generated code" for name in SHARED_NAMES | backend.reserved}

    def clash(self, names: Iterable[str]) -> str | None:
        """Describe the first of ``names`` that is already bound, if any."""
        for name in names:
            if keyword.iskeyword(name):
                return f"{name!r} is a Python keyword"
            if name in self._owners:
                return f"{name!r} is already used by {self._owners[name]}"
        return None

    def claim(self, names: Iterable[str], owner: str) -> None:
        for name in names:
            self._owners[name] = owner

    def claim_table(self, table: Table) -> None:
        name = table_type_name(table)
        problem = self.clash([name])
        if problem is not None:
            raise MalformedTableDefinition(f"table {table.name!r} generates {problem}")
        self.claim([name], f"table {table.name!r}")

    def claim_statement(self, descriptor: StatementDescriptor) -> None:
        names = names_for(descriptor)
        problem = self.clash(names)
        if problem is not None:
            raise DuplicateStatementName(
                f"statement {descriptor.name!r} generates {problem}",
                statement=descriptor.name,
                line=descriptor.line,
            )
        self.claim(names, f"statement {descriptor.name!r}")


def emit_module(
    descriptors: Sequence[StatementDescriptor],
    dialect: Dialect | str,
    *,
    tables: Mapping[str, Table] | Iterable[Table] = (),
    conventions: Sequence[CallingConvention | str] = (
        CallingConvention.prepared,
        CallingConvention.one_shot,
    ),
    header: str = DEFAULT_HEADER,
) -> str:
    """A complete, importable module with every accessor for ``descriptors``."""
    backend = get_backend(dialect)
    known = tables if isinstance(tables, Mapping) else {t.name.lower(): t for t in tables}
    namespace = Namespace(dialect)
    for table in known.values():
        namespace.claim_table(table)
    for descriptor in descriptors:
        namespace.claim_statement(descriptor)

    sections = [
        "\n".join([header, "from __future__ import annotations", "", *backend.imports])
    ]
    if backend.helpers:
        sections.append(backend.helpers)
    if descriptors:
        sections.append("\n\n".join(emit_sql_constant(d, dialect) for d in descriptors))
    sections.extend(emit_table(table) for table in known.values())
    for descriptor in descriptors:
        shapes = emit_shapes(descriptor, known)
        if shapes:
            sections.append(shapes)
        sections.extend(emit(descriptor, dialect, c) for c in conventions)
    logger.debug(
        "emitted %d statement(s) for %s", len(descriptors), backend.dialect.value
    )
    return "\n\n\n".join(sections) + "\n"

"""Bind statements to live connections.

:func:`prepare` compiles a :class:`~typedsql.statements.Statement` against a
``sqlite3`` connection; :func:`prepare_async` does the same against a psycopg
``AsyncConnection``. The returned executors are plain callables::

    get_user = prepare(conn, get_user_by_id)
    user = get_user({"id": 1})
"""

import logging
import sqlite3
from contextlib import closing
from typing import (
    Any,
    Generic,
    Iterator,
    Mapping,
    Protocol,
    Sequence,
    TypeVar,
)

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from pydantic import BaseModel, ValidationError

from typedsql.errors import (
    CallerInputError,
    OutputValidationError,
    StatementCompileError,
    StatementExecutionError,
)
from typedsql.sql_text import (
    count_placeholders,
    leading_keyword,
    placeholder_indexes,
    qmark_to_pyformat,
)
from typedsql.statements import ExecutionMode, Statement

logger = logging.getLogger("typedsql")

OutputT = TypeVar("OutputT")

Params = Mapping[str, Any] | BaseModel | None

EXPLAINABLE = frozenset({"SELECT", "INSERT", "UPDATE", "DELETE", "VALUES", "WITH"})
"""Statements PostgreSQL can plan with EXPLAIN without running them"""


class CursorProtocol(Protocol):
    @property
    def description(self) -> Sequence[tuple[Any, ...]] | None: ...

    row_factory: Any

    def execute(self, sql: str, parameters: Sequence[Any] = ...) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list[Any]: ...

    def close(self) -> None: ...

    def __iter__(self) -> Iterator[Any]: ...


class ConnectionProtocol(Protocol):
    def cursor(self) -> CursorProtocol: ...

    def execute(self, sql: str, parameters: Sequence[Any] = ...) -> Any: ...


def dict_row_factory(cursor: CursorProtocol, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert a row tuple to a dict keyed by the cursor's column names."""
    column_names = [desc[0] for desc in cursor.description or ()]
    return dict(zip(column_names, row))


class _Executor(Generic[OutputT]):
    def __init__(self, statement: Statement[OutputT]) -> None:
        self._statement = statement

    @property
    def statement(self) -> Statement[OutputT]:
        return self._statement

    @property
    def sql(self) -> str:
        return self._statement.sql

    @property
    def mode(self) -> ExecutionMode:
        return self._statement.mode

    def _marshal(self, params: Params) -> tuple[Any, ...]:
        """Validate ``params`` and order its values to match the placeholders."""
        statement = self._statement
        if not statement.has_inputs:
            if params:
                raise CallerInputError(
                    "statement takes no inputs", sql=self.sql, payload=params
                )
            return ()
        if params is None:
            raise CallerInputError(
                f"statement requires inputs {list(statement.inputs)}",
                sql=self.sql,
                payload=params,
            )
        if isinstance(params, BaseModel) and not isinstance(params, statement.input_schema):
            # another model carrying the same keys is validated by its fields
            params = params.model_dump()
        try:
            validated = statement.input_schema.model_validate(params)
        except ValidationError as e:
            raise CallerInputError(
                f"invalid input: {e.error_count()} validation error(s)\n{e}",
                sql=self.sql,
                payload=params,
            ) from e
        return tuple(getattr(validated, key) for key in statement.inputs)

    def _validate(self, raw: Any) -> OutputT:
        try:
            return self._statement.output_schema.validate(raw)
        except ValidationError as e:
            raise OutputValidationError(
                f"result does not match the output schema: {e.error_count()} validation error(s)\n{e}",
                sql=self.sql,
                payload=raw,
            ) from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}(mode={self.mode.value!r}, sql={self.sql.strip()!r})"


class PreparedStatement(_Executor[OutputT]):
    """A statement compiled against one ``sqlite3`` connection.

    Compilation happens once, at construction; the connection's statement
    cache keeps the compiled form for later calls. A failed call leaves the
    executor usable.
    """

    def __init__(self, connection: ConnectionProtocol, statement: Statement[OutputT]) -> None:
        super().__init__(statement)
        self._connection = connection
        self._compile()

    @property
    def connection(self) -> ConnectionProtocol:
        return self._connection

    def _compile(self) -> None:
        # EXPLAIN plans the statement without running it
        try:
            self._connection.execute(
                f"EXPLAIN {self.sql}", (None,) * len(self._statement.inputs)
            )
        except sqlite3.Error as e:
            raise StatementCompileError(
                f"failed to prepare statement: {e}", sql=self.sql
            ) from e
        logger.debug("prepared statement %s", self._statement.name or self.sql.strip())

    def execute(self, args: tuple[Any, ...]) -> Any:
        """Run the statement with positional ``args`` and return the raw result."""
        try:
            with closing(self._connection.cursor()) as cursor:
                cursor.row_factory = dict_row_factory
                cursor.execute(self.sql, args)
                if self.mode is ExecutionMode.get:
                    return cursor.fetchone()
                if self.mode is ExecutionMode.all:
                    return cursor.fetchall()
                return None
        except sqlite3.Error as e:
            raise StatementExecutionError(
                f"failed to execute statement: {e}", sql=self.sql
            ) from e

    def __call__(self, params: Params = None) -> OutputT:
        return self._validate(self.execute(self._marshal(params)))


class AsyncPreparedStatement(_Executor[OutputT]):
    """A statement bound to one psycopg ``AsyncConnection``.

    ``?`` and ``?N`` placeholders are rewritten to ``%s``. Every call asks
    psycopg for a server-side prepared statement, so the statement is parsed
    once per connection. There is no timeout or retry; cancellation is up to the
    caller.
    """

    def __init__(
        self, connection: AsyncConnection[Any], statement: Statement[OutputT]
    ) -> None:
        super().__init__(statement)
        self._connection = connection
        self._query = qmark_to_pyformat(statement.sql)
        self._order = placeholder_indexes(statement.sql)

    @property
    def connection(self) -> AsyncConnection[Any]:
        return self._connection

    @property
    def query(self) -> str:
        """The SQL as sent to the server."""
        return self._query

    async def compile(self) -> None:
        if leading_keyword(self.sql) not in EXPLAINABLE:
            # utility statements cannot be planned; they are checked on first run
            return
        try:
            # savepoint keeps a failed EXPLAIN from aborting the caller's transaction
            async with self._connection.transaction():
                nulls = (None,) * len(self._statement.inputs)
                await self._connection.execute(f"EXPLAIN {self._query}", self._bind(nulls))
        except psycopg.Error as e:
            raise StatementCompileError(
                f"failed to prepare statement: {e}", sql=self.sql
            ) from e
        logger.debug("prepared statement %s", self._statement.name or self.sql.strip())

    def _bind(self, args: tuple[Any, ...]) -> tuple[Any, ...]:
        """Arguments in %s order. A reused ``?N`` repeats its value."""
        if len(args) != count_placeholders(self.sql):
            # passed as is so psycopg reports the mismatch
            return args
        return tuple(args[index] for index in self._order)

    async def execute(self, args: tuple[Any, ...]) -> Any:
        try:
            async with self._connection.cursor(row_factory=dict_row) as cursor:
                await cursor.execute(self._query, args, prepare=True)
                if self.mode is ExecutionMode.get:
                    return await cursor.fetchone()
                if self.mode is ExecutionMode.all:
                    return await cursor.fetchall()
                return None
        except psycopg.Error as e:
            raise StatementExecutionError(
                f"failed to execute statement: {e}", sql=self.sql
            ) from e

    async def __call__(self, params: Params = None) -> OutputT:
        return self._validate(await self.execute(self._bind(self._marshal(params))))


def prepare(
    connection: ConnectionProtocol, statement: Statement[OutputT]
) -> PreparedStatement[OutputT]:
    """Compile ``statement`` against a ``sqlite3`` connection.

    Raises :class:`StatementCompileError` immediately if the engine rejects
    the SQL.
    """
    return PreparedStatement(connection, statement)


async def prepare_async(
    connection: AsyncConnection[Any], statement: Statement[OutputT]
) -> AsyncPreparedStatement[OutputT]:
    """Bind ``statement`` to a psycopg async connection, planning it first."""
    executor = AsyncPreparedStatement(connection, statement)
    await executor.compile()
    return executor

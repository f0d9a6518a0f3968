from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, ParamSpec, TypeVar

from psycopg import AsyncConnection
from psycopg import OperationalError as PGOperationalError
from sqlalchemy import Engine, create_engine, inspect, text
from sqlalchemy.exc import CompileError, NoSuchTableError, OperationalError, ProgrammingError

from typedsql.errors import DatabaseConnectionError
from typedsql.schema import Column, Table

if TYPE_CHECKING:
    from typedsql.config import ConnectionSettings

Param = ParamSpec("Param")
RetType = TypeVar("RetType")


def query() -> Callable[[Callable[Param, RetType]], Callable[Param, RetType]]:
    def decorator(func: Callable[Param, RetType]) -> Callable[Param, RetType]:
        def dec_query(*args: Param.args, **kwargs: Param.kwargs) -> RetType:
            try:
                return func(*args, **kwargs)
            except OperationalError as e:
                raise DatabaseConnectionError(
                    "Could not reach the database. Either there is a connection issue or the credentials are bad."
                ) from e
            except ProgrammingError as e:
                if len(e.args) > 0 and "InsufficientPrivilege" in str(e.args[0]):
                    raise DatabaseConnectionError("insufficient privileges") from e
                raise

        return dec_query

    return decorator


def create_uri(
    username: str,
    password: str,
    driver: str | None = None,
    host: str | None = None,
    port: str | int | None = None,
    database: str | None = None,
):
    if driver is None:
        driver = "postgresql+psycopg"
    if host is None:
        host = "localhost"
    if port is None:
        port = 5432
    if database is None:
        database = "postgres"
    uri = f"{driver}://{username}:{password}@{host}:{port}/{database}"
    return uri


def get_engine(target: "ConnectionSettings | str", **kwargs: Any) -> Engine:
    uri = target if isinstance(target, str) else target.uri()
    return create_engine(uri, **kwargs)


def _engine_type(type_: Any, engine: Engine) -> str:
    try:
        return type_.compile(dialect=engine.dialect)
    except CompileError:
        # untyped columns reflect as NullType, which has no DDL form
        return ""


@query()
def reflect_tables(engine: Engine, schema: str | None = None) -> dict[str, Table]:
    """Describe every table of a live database as :class:`Table` models.

    The result can be handed to ``parse_schema`` so queries are inferred
    against an existing database instead of ``CREATE TABLE`` text.
    """
    inspector = inspect(engine)
    tables: dict[str, Table] = {}
    for table_name in inspector.get_table_names(schema=schema):
        try:
            reflected = inspector.get_columns(table_name, schema=schema)
        except NoSuchTableError:
            continue
        columns = tuple(
            Column(
                name=column["name"],
                engine_type=_engine_type(column["type"], engine),
                nullable=bool(column.get("nullable", True)),
            )
            for column in reflected
        )
        tables[table_name.lower()] = Table(name=table_name, columns=columns)
    return tables


async def connect_async(
    settings: "ConnectionSettings", *, autocommit: bool = False
) -> AsyncConnection[Any]:
    try:
        return await AsyncConnection.connect(settings.conninfo(), autocommit=autocommit)
    except PGOperationalError as e:
        raise DatabaseConnectionError(
            "Could not reach the database. Either there is a connection issue or the credentials are bad."
        ) from e


@dataclass
class DatabaseListItem:
    name: str


@query()
def list_databases(engine: Engine) -> list[DatabaseListItem]:
    with engine.connect() as conn:
        res = conn.execute(text("select datname as name from pg_database;"))
        values = res.all()
    return [DatabaseListItem(name=row[0]) for row in values]


def _autocommit(engine: Engine) -> Engine:
    # CREATE/DROP DATABASE cannot run inside a transaction block
    return engine.execution_options(isolation_level="AUTOCOMMIT")


@query()
def create_database(engine: Engine, db_name: str) -> None:
    quoted = engine.dialect.identifier_preparer.quote(db_name)
    with _autocommit(engine).connect() as conn:
        conn.execute(text(f"CREATE DATABASE {quoted}"))


@query()
def drop_database(engine: Engine, db_name: str) -> None:
    quoted = engine.dialect.identifier_preparer.quote(db_name)
    with _autocommit(engine).connect() as conn:
        conn.execute(text(f"DROP DATABASE IF EXISTS {quoted}"))

import pytest

from tests.fakes import FakeAsyncConnection, load_module, read_sql
from typedsql.annotations import parse_annotated
from typedsql.emitters import emit_module
from typedsql.schema import Dialect


@pytest.fixture()
def queries():
    report = parse_annotated(read_sql("queries.sql"))
    return load_module(emit_module(report.statements, Dialect.remote_async))


@pytest.mark.asyncio
async def test_one_shot_binds_in_placeholder_order(queries):
    conn = FakeAsyncConnection()
    assert await queries.update_user_email(conn, {"id": 7, "email": "a@example.com"}) is None
    assert conn.executed == [
        ("UPDATE users SET email = %s WHERE id = %s", ("a@example.com", 7), None)
    ]


@pytest.mark.asyncio
async def test_one_shot_fetches(queries):
    conn = FakeAsyncConnection(
        results=[
            [{"id": 1, "name": "Alice", "email": None}],
            [],
            [{"name": "Alice"}, {"name": "Bob"}],
        ]
    )
    assert await queries.get_user_by_id(conn, {"id": 1}) == {
        "id": 1,
        "name": "Alice",
        "email": None,
    }
    assert await queries.get_user_by_id(conn, {"id": 2}) is None
    assert await queries.get_all_users(conn) == [{"name": "Alice"}, {"name": "Bob"}]
    assert [params for _, params, _ in conn.executed] == [(1,), (2,), ()]


@pytest.mark.asyncio
async def test_prepared_uses_server_side_prepare(queries):
    conn = FakeAsyncConnection(results=[[{"id": 1}], [{"id": 2}]])
    insert = queries.prepare_insert_user(conn)
    assert await insert({"name": "Alice"}) == {"id": 1}
    assert await insert({"name": "Bob"}) == {"id": 2}
    assert conn.executed == [
        ("INSERT INTO users (name) VALUES (%s) RETURNING id", ("Alice",), True),
        ("INSERT INTO users (name) VALUES (%s) RETURNING id", ("Bob",), True),
    ]


@pytest.mark.asyncio
async def test_prepared_exec_without_params(queries):
    conn = FakeAsyncConnection()
    create = queries.prepare_create_users_table(conn)
    await create()
    [(query, params, prepare)] = conn.executed
    assert query.startswith("CREATE TABLE users (")
    assert params == ()
    assert prepare is True


@pytest.mark.asyncio
async def test_database_errors_propagate(queries):
    conn = FakeAsyncConnection(fail_on={"DELETE": RuntimeError("connection lost")})
    with pytest.raises(RuntimeError, match="connection lost"):
        await queries.delete_user(conn, {"id": 1})


@pytest.mark.asyncio
async def test_many_without_rows_returns_empty_list(queries):
    conn = FakeAsyncConnection(results=[[]])
    assert await queries.get_users_by_min_age(conn, {"minAge": 99}) == []
    assert await queries.prepare_get_all_users(conn)() == []


@pytest.mark.asyncio
async def test_numbered_placeholders_bind_repeated_values():
    report = parse_annotated(
        "-- @name between\n-- @count many\n-- @param low number\n-- @param high number\n"
        "SELECT * FROM t WHERE a >= ?1 AND b >= ?1 AND a < ?2;"
    )
    module = load_module(emit_module(report.statements, Dialect.remote_async))
    conn = FakeAsyncConnection()
    assert await module.between(conn, {"low": 1, "high": 5}) == []
    assert conn.executed == [
        ("SELECT * FROM t WHERE a >= %s AND b >= %s AND a < %s", (1, 1, 5), None)
    ]

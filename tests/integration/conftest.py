from typing import AsyncIterator, Iterator

import dotenv
import pytest
import pytest_asyncio
from psycopg import AsyncConnection
from sqlalchemy import Engine

from tests.test_environment import resolve_test_settings
from typedsql.db_utils import (
    connect_async,
    create_database,
    drop_database,
    get_engine,
    list_databases,
)
from typedsql.utils import create_now_str

dotenv.load_dotenv()


@pytest.fixture()
def creator_engine() -> Iterator[Engine]:
    engine = get_engine(resolve_test_settings())
    yield engine
    engine.dispose()


@pytest.fixture()
def test_db(creator_engine: Engine) -> Iterator[str]:
    db_name = "typedsql_test_" + create_now_str().lower()
    create_database(creator_engine, db_name)
    yield db_name
    drop_database(creator_engine, db_name)
    remaining = [db for db in list_databases(creator_engine) if db.name == db_name]
    assert len(remaining) == 0


@pytest_asyncio.fixture()
async def connection(test_db: str) -> AsyncIterator[AsyncConnection]:
    conn = await connect_async(resolve_test_settings(database=test_db), autocommit=True)
    yield conn
    await conn.close()

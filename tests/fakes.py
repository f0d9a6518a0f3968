import types
from contextlib import asynccontextmanager
from pathlib import Path

DATA_DIR = Path(__file__).parent / "data"


def read_sql(name: str) -> str:
    return (DATA_DIR / name).read_text(encoding="utf-8")


def load_module(source: str, name: str = "generated_queries") -> types.ModuleType:
    module = types.ModuleType(name)
    exec(compile(source, f"<{name}>", "exec"), module.__dict__)
    return module


class FakeAsyncCursor:
    def __init__(self, connection: "FakeAsyncConnection", row_factory) -> None:
        self._connection = connection
        self.row_factory = row_factory
        self._rows: list[dict] = []

    async def __aenter__(self) -> "FakeAsyncCursor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def execute(self, query, params=None, *, prepare=None) -> "FakeAsyncCursor":
        self._connection.record(query, params, prepare)
        self._rows = list(self._connection.results.pop(0)) if self._connection.results else []
        return self

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)


class FakeAsyncConnection:
    """Records what a psycopg AsyncConnection would have been asked to run.

    ``results`` is a queue of row lists, one per cursor execute.
    ``fail_on`` raises the given exception for queries containing a key.
    """

    def __init__(self, results=None, fail_on=None) -> None:
        self.results = list(results or [])
        self.fail_on = dict(fail_on or {})
        self.executed: list[tuple[str, tuple | None, bool | None]] = []
        self.transactions = 0

    def record(self, query, params, prepare) -> None:
        for needle, error in self.fail_on.items():
            if needle in query:
                raise error
        self.executed.append((query, params, prepare))

    def cursor(self, row_factory=None) -> FakeAsyncCursor:
        return FakeAsyncCursor(self, row_factory)

    async def execute(self, query, params=None, *, prepare=None) -> None:
        self.record(query, params, prepare)

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield

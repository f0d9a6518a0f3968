import logging
from pathlib import Path

from typedsql.config import GeneratorConfig
from typedsql.generate import generate_annotated
from typedsql.schema import Dialect

SQL_PATH = Path(__file__).parents[1] / "tests" / "data" / "queries.sql"


def generate_queries(dialect: Dialect = Dialect.local_sync) -> str:
    config = GeneratorConfig(dialect=dialect)
    result = generate_annotated(SQL_PATH.read_text(encoding="utf-8"), config)
    for error in result.errors:
        print(f"# skipped: {error}")
    return result.source


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print(generate_queries(Dialect.remote_async))

import os

from pydantic import BaseModel, ConfigDict

from typedsql.annotations import DEFAULT_PREFIX
from typedsql.db_utils import create_uri
from typedsql.emitters import DEFAULT_HEADER
from typedsql.schema import CallingConvention, Dialect


class BaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)


class GeneratorConfig(BaseConfig):
    annotation_prefix: str = DEFAULT_PREFIX
    dialect: Dialect = Dialect.local_sync
    conventions: tuple[CallingConvention, ...] = (
        CallingConvention.prepared,
        CallingConvention.one_shot,
    )
    strict: bool = False
    header: str = DEFAULT_HEADER


class ConnectionSettings(BaseConfig):
    username: str
    password: str
    host: str = "localhost"
    port: int = 5432
    database: str = "postgres"
    driver: str = "postgresql+psycopg"

    def uri(self) -> str:
        return create_uri(
            username=self.username,
            password=self.password,
            driver=self.driver,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def conninfo(self) -> str:
        return (
            f"host={self.host} port={self.port} user={self.username} "
            f"password={self.password} dbname={self.database}"
        )

    @classmethod
    def from_env(cls, prefix: str = "TYPEDSQL_PG_") -> "ConnectionSettings":
        """Read settings from ``<prefix>USERNAME``, ``<prefix>PASSWORD``, etc.

        Username and password are required; the rest fall back to defaults.
        """
        values = {
            key: os.environ[prefix + key.upper()]
            for key in ("username", "password", "host", "port", "database")
            if prefix + key.upper() in os.environ
        }
        return cls(**values)

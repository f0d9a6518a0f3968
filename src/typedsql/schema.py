from enum import StrEnum

from pydantic import BaseModel, ConfigDict, model_validator


class ScalarType(StrEnum):
    number = "number"
    string = "string"
    binary = "binary"
    opaque = "opaque"


class Cardinality(StrEnum):
    exec = "exec"
    one = "one"
    many = "many"


class Dialect(StrEnum):
    local_sync = "local-sync"
    remote_async = "remote-async"


class CallingConvention(StrEnum):
    one_shot = "one-shot"
    prepared = "prepared"


class SchemaModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class Column(SchemaModel):
    name: str
    engine_type: str
    nullable: bool = True


class Table(SchemaModel):
    name: str
    columns: tuple[Column, ...]

    @model_validator(mode="after")
    def _unique_columns(self) -> "Table":
        seen: set[str] = set()
        for column in self.columns:
            key = column.name.lower()
            if key in seen:
                raise ValueError(
                    f"duplicate column {column.name!r} in table {self.name!r}"
                )
            seen.add(key)
        return self

    def column(self, name: str) -> Column | None:
        key = name.lower()
        for column in self.columns:
            if column.name.lower() == key:
                return column
        return None


class Parameter(SchemaModel):
    name: str
    scalar_type: ScalarType


class ReturnField(SchemaModel):
    name: str
    scalar_type: ScalarType
    nullable: bool = False


class StatementDescriptor(SchemaModel):
    """One parsed SQL statement together with its typed call contract.

    ``parameters`` are ordered to match the positional ``?`` placeholders of
    ``sql`` left to right. ``source_table`` names the table whose full shape
    ``returns`` reproduces, when the shape was inferred from ``SELECT *``.
    """

    name: str
    cardinality: Cardinality
    parameters: tuple[Parameter, ...] = ()
    returns: tuple[ReturnField, ...] = ()
    sql: str
    line: int | None = None
    source_table: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "StatementDescriptor":
        if self.cardinality is Cardinality.exec and self.returns:
            raise ValueError(f"exec statement {self.name!r} cannot declare returns")
        for label, names in (
            ("parameter", [p.name for p in self.parameters]),
            ("return field", [r.name for r in self.returns]),
        ):
            if len(set(names)) != len(names):
                raise ValueError(f"duplicate {label} name in statement {self.name!r}")
        return self

    @property
    def is_opaque_result(self) -> bool:
        return self.cardinality is not Cardinality.exec and not self.returns

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, Literal, Mapping, Sequence, TypeVar, overload

from pydantic import BaseModel, ConfigDict, TypeAdapter, create_model

from typedsql.errors import StatementDefinitionError
from typedsql.schema import Cardinality, StatementDescriptor
from typedsql.type_mapper import python_type
from typedsql.utils import to_pascal_case


class ExecutionMode(StrEnum):
    run = "run"
    get = "get"
    all = "all"


OutputT = TypeVar("OutputT")
ModelT = TypeVar("ModelT", bound=BaseModel)

SchemaSpec = Mapping[str, Any] | type[BaseModel]

_MODES = {
    Cardinality.exec: ExecutionMode.run,
    Cardinality.one: ExecutionMode.get,
    Cardinality.many: ExecutionMode.all,
}

_OPAQUE_RECORD: TypeAdapter[dict[str, Any]] = TypeAdapter(dict[str, Any])


@dataclass(frozen=True)
class OutputSchema:
    """Validator over the result of one execution, shaped by ``mode``.

    ``record`` is None for opaque results, which are returned as plain dicts.
    """

    mode: ExecutionMode
    record: type[BaseModel] | None = None

    def validate_record(self, raw: Any) -> Any:
        if self.record is None:
            return _OPAQUE_RECORD.validate_python(raw)
        return self.record.model_validate(raw)

    def validate(self, raw: Any) -> Any:
        if self.mode is ExecutionMode.run:
            return None
        if self.mode is ExecutionMode.get:
            return None if raw is None else self.validate_record(raw)
        return [self.validate_record(row) for row in raw]


@dataclass(frozen=True)
class Statement(Generic[OutputT]):
    """A SQL statement with its input and output contract.

    Pure configuration: it never holds a database handle, so the same
    statement can be prepared against any number of connections.
    """

    sql: str
    inputs: tuple[str, ...]
    input_schema: type[BaseModel]
    output_schema: OutputSchema
    mode: ExecutionMode
    name: str | None = None

    @property
    def has_inputs(self) -> bool:
        return bool(self.inputs)


def build_model(model_name: str, spec: SchemaSpec | None) -> type[BaseModel]:
    """Build a strict record model from a field mapping.

    Values are never coerced across types and undeclared keys are ignored.
    Pydantic models are used as given.
    """
    if isinstance(spec, type) and issubclass(spec, BaseModel):
        return spec
    fields = {
        name: field_spec if isinstance(field_spec, tuple) else (field_spec, ...)
        for name, field_spec in (spec or {}).items()
    }
    return create_model(
        model_name,
        __config__=ConfigDict(strict=True, extra="ignore", frozen=True),
        **fields,
    )


def _field_names(spec: SchemaSpec | None) -> set[str]:
    if spec is None:
        return set()
    if isinstance(spec, type) and issubclass(spec, BaseModel):
        return set(spec.model_fields)
    return set(spec)


@overload
def define_statement(
    sql: str,
    *,
    inputs: Sequence[str] = (),
    input_schema: SchemaSpec | None = None,
    output_schema: None = None,
    mode: Literal["run", ExecutionMode.run],
    name: str | None = None,
) -> Statement[None]: ...
@overload
def define_statement(
    sql: str,
    *,
    inputs: Sequence[str] = (),
    input_schema: SchemaSpec | None = None,
    output_schema: type[ModelT],
    mode: Literal["get", ExecutionMode.get],
    name: str | None = None,
) -> Statement[ModelT | None]: ...
@overload
def define_statement(
    sql: str,
    *,
    inputs: Sequence[str] = (),
    input_schema: SchemaSpec | None = None,
    output_schema: type[ModelT],
    mode: Literal["all", ExecutionMode.all] = "all",
    name: str | None = None,
) -> Statement[list[ModelT]]: ...
@overload
def define_statement(
    sql: str,
    *,
    inputs: Sequence[str] = (),
    input_schema: SchemaSpec | None = None,
    output_schema: Mapping[str, Any] | None = None,
    mode: ExecutionMode | str = "all",
    name: str | None = None,
) -> Statement[Any]: ...
def define_statement(
    sql: str,
    *,
    inputs: Sequence[str] = (),
    input_schema: SchemaSpec | None = None,
    output_schema: SchemaSpec | None = None,
    mode: ExecutionMode | str = ExecutionMode.all,
    name: str | None = None,
):
    """Define a statement.

    ``inputs`` lists the input keys in placeholder order. Schemas map field
    names to types (or ``(type, default)`` pairs), or are pydantic models.
    ``mode`` shapes the result: ``run`` returns None, ``get`` a single record
    or None, ``all`` a list of records. With no output schema, ``get`` and
    ``all`` return plain dicts.
    """
    try:
        mode = ExecutionMode(mode)
    except ValueError:
        raise StatementDefinitionError(
            f"unknown mode {mode!r}, expected run, get or all", sql=sql
        ) from None
    inputs = tuple(inputs)
    if len(set(inputs)) != len(inputs):
        raise StatementDefinitionError(f"duplicate input keys in {list(inputs)}", sql=sql)

    prefix = to_pascal_case(name) if name else "Statement"
    if input_schema is None:
        input_schema = {key: Any for key in inputs}
    else:
        missing = [key for key in inputs if key not in _field_names(input_schema)]
        if missing:
            raise StatementDefinitionError(
                f"input key(s) {missing} are not declared in the input schema", sql=sql
            )
    input_model = build_model(f"{prefix}Input", input_schema)

    if mode is ExecutionMode.run:
        if _field_names(output_schema):
            raise StatementDefinitionError(
                "run statements discard their output and take no output schema", sql=sql
            )
        record = None
    elif output_schema is None:
        record = None
    else:
        record = build_model(f"{prefix}Output", output_schema)

    return Statement(
        sql=sql,
        inputs=inputs,
        input_schema=input_model,
        output_schema=OutputSchema(mode=mode, record=record),
        mode=mode,
        name=name,
    )


def statement_from_descriptor(descriptor: StatementDescriptor) -> Statement[Any]:
    """Build the runtime form of a parsed statement."""
    mode = _MODES[descriptor.cardinality]
    output_schema = None
    if descriptor.returns:
        output_schema = {
            field.name: python_type(field.scalar_type, field.nullable)
            for field in descriptor.returns
        }
    return define_statement(
        descriptor.sql,
        inputs=[p.name for p in descriptor.parameters],
        input_schema={p.name: python_type(p.scalar_type) for p in descriptor.parameters},
        output_schema=output_schema,
        mode=mode,
        name=descriptor.name,
    )

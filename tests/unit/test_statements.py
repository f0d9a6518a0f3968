from typing import Any

import pytest
from pydantic import BaseModel, ValidationError

from tests.fakes import read_sql
from typedsql.annotations import parse_annotated
from typedsql.errors import StatementDefinitionError
from typedsql.statements import (
    ExecutionMode,
    OutputSchema,
    build_model,
    define_statement,
    statement_from_descriptor,
)


class User(BaseModel):
    id: int
    name: str


def test_define_defaults():
    statement = define_statement("SELECT 1 AS one")
    assert statement.mode is ExecutionMode.all
    assert statement.inputs == ()
    assert not statement.has_inputs
    assert statement.output_schema.record is None
    assert statement.output_schema.validate([{"one": 1}]) == [{"one": 1}]


def test_define_with_mappings():
    statement = define_statement(
        "SELECT id, name FROM users WHERE id = ?",
        inputs=["id"],
        input_schema={"id": int},
        output_schema={"id": int, "name": (str, "anonymous")},
        mode="get",
        name="getUser",
    )
    assert statement.mode is ExecutionMode.get
    assert statement.input_schema.__name__ == "GetUserInput"
    record = statement.output_schema.validate({"id": 1})
    assert record.id == 1
    assert record.name == "anonymous"
    assert statement.output_schema.validate(None) is None


def test_records_are_strict_and_ignore_extra_keys():
    model = build_model("Row", {"id": int, "email": str | None})
    assert model.model_validate({"id": 1, "email": None, "other": 3}).model_dump() == {
        "id": 1,
        "email": None,
    }
    with pytest.raises(ValidationError):
        model.model_validate({"id": "1", "email": None})
    with pytest.raises(ValidationError):
        model.model_validate({"id": 1})


def test_pydantic_models_are_used_as_given():
    statement = define_statement(
        "SELECT id, name FROM users", output_schema=User, mode=ExecutionMode.all
    )
    assert statement.output_schema.record is User
    [user] = statement.output_schema.validate([{"id": 1, "name": "Ann"}])
    assert user == User(id=1, name="Ann")


def test_input_schema_defaults_to_any():
    statement = define_statement("SELECT ? AS a", inputs=["a"])
    assert statement.input_schema.model_fields["a"].annotation is Any


def test_run_mode_discards_output():
    statement = define_statement("DELETE FROM users", mode="run")
    assert statement.output_schema == OutputSchema(mode=ExecutionMode.run)
    assert statement.output_schema.validate([{"ignored": True}]) is None


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"mode": "first"}, "unknown mode 'first'"),
        ({"inputs": ["a", "a"]}, "duplicate input keys"),
        ({"inputs": ["a", "b"], "input_schema": {"a": int}}, r"\['b'\] are not declared"),
        ({"mode": "run", "output_schema": {"a": int}}, "take no output schema"),
    ],
)
def test_definition_errors(kwargs, message):
    with pytest.raises(StatementDefinitionError, match=message) as e:
        define_statement("SELECT ? AS a, ? AS b", **kwargs)
    assert e.value.sql == "SELECT ? AS a, ? AS b"


def test_statement_from_descriptor():
    report = parse_annotated(read_sql("queries.sql"))
    by_name = {d.name: statement_from_descriptor(d) for d in report.statements}

    get_user = by_name["getUserById"]
    assert get_user.mode is ExecutionMode.get
    assert get_user.inputs == ("id",)
    assert get_user.name == "getUserById"
    record = get_user.output_schema.validate({"id": 1, "name": "Ann", "email": "a@b.c"})
    assert (record.id, record.name, record.email) == (1, "Ann", "a@b.c")
    with pytest.raises(ValidationError):
        get_user.output_schema.validate({"id": 1, "name": "Ann", "email": None})

    assert by_name["deleteUser"].mode is ExecutionMode.run
    assert by_name["getAllUsers"].mode is ExecutionMode.all
    assert by_name["createUsersTable"].inputs == ()


def test_number_accepts_int_and_float():
    report = parse_annotated(read_sql("queries.sql"))
    [min_age] = [d for d in report.statements if d.name == "getUsersByMinAge"]
    statement = statement_from_descriptor(min_age)
    assert statement.input_schema.model_validate({"minAge": 30}).minAge == 30
    assert statement.input_schema.model_validate({"minAge": 30.5}).minAge == 30.5
    with pytest.raises(ValidationError):
        statement.input_schema.model_validate({"minAge": "30"})

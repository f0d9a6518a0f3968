import re

from typedsql.utils import create_now_str, indent, to_pascal_case, to_snake_case


def test_to_snake_case():
    assert to_snake_case("insertUser") == "insert_user"
    assert to_snake_case("getUserById") == "get_user_by_id"
    assert to_snake_case("HTTPStatus") == "http_status"
    assert to_snake_case("already_snake") == "already_snake"


def test_to_pascal_case():
    assert to_pascal_case("insertUser") == "InsertUser"
    assert to_pascal_case("audit_log") == "AuditLog"
    assert to_pascal_case("users") == "Users"


def test_indent_leaves_blank_lines_alone():
    assert indent(["a", "", "b"], 2) == ["        a", "", "        b"]


def test_create_now_str():
    assert re.fullmatch(r"\d{4}_\d{2}_\d{2}T\d{2}_\d{2}_\d{2}", create_now_str())

from typing import Any


class TypedSQLException(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DatabaseConnectionError(TypedSQLException): ...


class GenerationError(TypedSQLException):
    """Raised while turning annotated SQL text into statement descriptors."""

    def __init__(
        self, message: str, *, statement: str | None = None, line: int | None = None
    ) -> None:
        super().__init__(message)
        self.statement = statement
        self.line = line

    def __str__(self) -> str:
        where = []
        if self.statement is not None:
            where.append(f"statement {self.statement!r}")
        if self.line is not None:
            where.append(f"line {self.line}")
        if not where:
            return self.message
        return f"{self.message} ({', '.join(where)})"


class MalformedAnnotation(GenerationError): ...


class UnknownCardinality(GenerationError): ...


class UnsupportedType(GenerationError): ...


class PlaceholderCountMismatch(GenerationError): ...


class DuplicateStatementName(GenerationError): ...


class MalformedTableDefinition(GenerationError): ...


class StatementError(TypedSQLException):
    """Base for runtime statement failures. Always carries the SQL text."""

    def __init__(self, message: str, *, sql: str) -> None:
        super().__init__(message)
        self.sql = sql

    def __str__(self) -> str:
        return f"{self.message}\nSQL: {self.sql.strip()}"


class StatementDefinitionError(StatementError): ...


class StatementCompileError(StatementError): ...


class StatementExecutionError(StatementError): ...


class StatementValidationError(StatementError):
    def __init__(self, message: str, *, sql: str, payload: Any) -> None:
        super().__init__(message, sql=sql)
        self.payload = payload

    def __str__(self) -> str:
        return f"{super().__str__()}\nPayload: {self.payload!r}"


class CallerInputError(StatementValidationError): ...


class OutputValidationError(StatementValidationError): ...

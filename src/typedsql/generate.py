import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from typedsql.annotations import ParseReport, parse_annotated
from typedsql.config import GeneratorConfig
from typedsql.emitters import Namespace, emit_module
from typedsql.errors import GenerationError
from typedsql.inference import parse_schema
from typedsql.schema import Dialect, StatementDescriptor, Table

logger = logging.getLogger("typedsql")


def _drop_colliding(
    report: ParseReport, tables: dict[str, Table], dialect: Dialect | str, *, strict: bool
) -> None:
    # distinct names can still map to the same Python identifier, or to one
    # the generated module already binds
    namespace = Namespace(dialect)
    for key, table in list(tables.items()):
        try:
            namespace.claim_table(table)
        except GenerationError as e:
            del tables[key]
            report.record(e, strict=strict)
    for descriptor in list(report.statements):
        try:
            namespace.claim_statement(descriptor)
        except GenerationError as e:
            report.statements.remove(descriptor)
            report.record(e, strict=strict)


@dataclass
class GenerationResult:
    source: str
    statements: list[StatementDescriptor]
    tables: dict[str, Table] = field(default_factory=dict)
    errors: list[GenerationError] = field(default_factory=list)


def generate_annotated(text: str, config: GeneratorConfig | None = None) -> GenerationResult:
    """Generate an accessor module from annotation-block SQL."""
    if config is None:
        config = GeneratorConfig()
    report = parse_annotated(text, prefix=config.annotation_prefix, strict=config.strict)
    _drop_colliding(report, {}, config.dialect, strict=config.strict)
    source = emit_module(
        report.statements,
        config.dialect,
        conventions=config.conventions,
        header=config.header,
    )
    logger.info(
        "generated %d accessor(s), skipped %d statement(s)",
        len(report.statements),
        len(report.errors),
    )
    return GenerationResult(source=source, statements=report.statements, errors=report.errors)


def generate_from_schema(
    text: str,
    config: GeneratorConfig | None = None,
    tables: Mapping[str, Table] | Iterable[Table] | None = None,
) -> GenerationResult:
    """Generate table types and accessors from a schema with named queries."""
    if config is None:
        config = GeneratorConfig()
    report = parse_schema(
        text,
        tables=tables,
        prefix=config.annotation_prefix,
        strict=config.strict,
        dialect=config.dialect,
    )
    _drop_colliding(report, report.tables, config.dialect, strict=config.strict)
    source = emit_module(
        report.statements,
        config.dialect,
        tables=report.tables,
        conventions=config.conventions,
        header=config.header,
    )
    logger.info(
        "generated %d table type(s) and %d accessor(s), skipped %d statement(s)",
        len(report.tables),
        len(report.statements),
        len(report.errors),
    )
    return GenerationResult(
        source=source,
        statements=report.statements,
        tables=report.tables,
        errors=report.errors,
    )

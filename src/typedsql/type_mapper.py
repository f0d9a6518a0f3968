"""Mapping between engine column types, annotation tokens and Python types.

Integer and floating point columns both map to ``number``; the distinction
is not carried into generated or runtime types.
"""

from typing import Any

from typedsql.errors import UnsupportedType
from typedsql.schema import ScalarType

_ENGINE_RULES: tuple[tuple[tuple[str, ...], ScalarType], ...] = (
    (("INT", "REAL", "NUMERIC"), ScalarType.number),
    (("TEXT", "CHAR", "CLOB"), ScalarType.string),
    (("BLOB",), ScalarType.binary),
)

ANNOTATION_TYPES = {
    "number": ScalarType.number,
    "string": ScalarType.string,
}

_ANNOTATIONS = {
    ScalarType.number: "float",
    ScalarType.string: "str",
    ScalarType.binary: "bytes",
    ScalarType.opaque: "Any",
}

_PYTHON_TYPES: dict[ScalarType, Any] = {
    ScalarType.number: int | float,
    ScalarType.string: str,
    ScalarType.binary: bytes,
    ScalarType.opaque: Any,
}


def map_engine_type(engine_type: str) -> ScalarType:
    upper = engine_type.upper()
    for needles, scalar in _ENGINE_RULES:
        if any(needle in upper for needle in needles):
            return scalar
    return ScalarType.opaque


def map_annotation_type(token: str) -> ScalarType:
    try:
        return ANNOTATION_TYPES[token]
    except KeyError:
        allowed = ", ".join(ANNOTATION_TYPES)
        raise UnsupportedType(
            f"unsupported type {token!r}, expected one of: {allowed}"
        ) from None


def python_annotation(scalar: ScalarType, nullable: bool = False) -> str:
    """Source text of the annotation used in generated code."""
    annotation = _ANNOTATIONS[scalar]
    if nullable and scalar is not ScalarType.opaque:
        return f"{annotation} | None"
    return annotation


def python_type(scalar: ScalarType, nullable: bool = False) -> Any:
    """Runtime type used to build validation models."""
    tp = _PYTHON_TYPES[scalar]
    if nullable and scalar is not ScalarType.opaque:
        return tp | None
    return tp

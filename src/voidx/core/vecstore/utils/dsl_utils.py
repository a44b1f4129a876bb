"""Compilation of the filter DSL into Milvus boolean expressions.

Leaves compile to comparisons (``==``, ``!=``, ``like``, ``in``), nodes to
parenthesized ``&&`` / ``||`` chains. An empty ``and`` is ``true`` and an
empty ``or`` is ``false``. Every referenced field must be a scalar column of
the collection and values must match the column type.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Union

from ..core.exceptions import InvalidDSLError
from ..core.schemas import DSLLeaf, DSLNode, FieldType
from .string_utils import quote_milvus_string

logger = logging.getLogger(__name__)

_COMPARATORS = {"eq": "==", "ne": "!="}
_CONNECTIVES = {"and": "&&", "or": "||"}
_EMPTY_CONNECTIVE = {"and": "true", "or": "false"}


def compile_dsl(
    dsl: Union[DSLLeaf, DSLNode], scalar_fields: Mapping[str, FieldType]
) -> str:
    """Compile a DSL tree against the scalar columns of a collection.

    Args:
        dsl: Filter tree
        scalar_fields: Column name to type for every filterable column

    Returns:
        Milvus boolean expression

    Raises:
        InvalidDSLError: For unknown fields, type mismatches or bad values
    """
    if isinstance(dsl, DSLNode):
        parts = [compile_dsl(child, scalar_fields) for child in dsl.children]
        if not parts:
            return _EMPTY_CONNECTIVE[dsl.op]
        return "( " + f" {_CONNECTIVES[dsl.op]} ".join(parts) + " )"

    if not isinstance(dsl, DSLLeaf):
        raise InvalidDSLError(f"Unsupported DSL node: {type(dsl).__name__}")

    field_type = scalar_fields.get(dsl.field)
    if field_type is None:
        raise InvalidDSLError(
            f"Unknown field '{dsl.field}' in filter",
            details={"known_fields": sorted(scalar_fields)},
        )

    if dsl.op in _COMPARATORS:
        literal = _format_value(dsl.field, field_type, dsl.value)
        return f"{dsl.field} {_COMPARATORS[dsl.op]} {literal}"

    if dsl.op == "like":
        if field_type != FieldType.TEXT or not isinstance(dsl.value, str):
            raise InvalidDSLError(
                f"'like' requires a text field and a string pattern: {dsl.field}"
            )
        return f"{dsl.field} like {quote_milvus_string(dsl.value)}"

    # op == "in"
    if not isinstance(dsl.value, (list, tuple, set, frozenset)):
        raise InvalidDSLError(f"'in' requires a list of values: {dsl.field}")
    values = list(dsl.value)
    if isinstance(dsl.value, (set, frozenset)):
        values = sorted(values, key=repr)
    literals = [_format_value(dsl.field, field_type, v) for v in values]
    return f"{dsl.field} in [{', '.join(literals)}]"


def _format_value(field: str, field_type: FieldType, value: Any) -> str:
    if field_type == FieldType.TEXT:
        if not isinstance(value, str):
            raise InvalidDSLError(
                f"Field '{field}' is text, got {type(value).__name__}"
            )
        return quote_milvus_string(value)

    if field_type == FieldType.INT64:
        # bool is an int subclass but has no place in an INT64 comparison
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidDSLError(
                f"Field '{field}' is an integer, got {type(value).__name__}"
            )
        return str(value)

    raise InvalidDSLError(f"Field '{field}' of type {field_type.name} is not filterable")


def partitions_from_dsl(
    dsl: Union[DSLLeaf, DSLNode, None], partition_key: str
) -> List[str]:
    """Partition values pinned by the filter for ``partition_key``.

    Only an ``eq`` / ``in`` leaf at the top level, or directly under a
    top-level ``and``, pins partitions; anything else means all partitions.
    """
    if dsl is None:
        return []

    candidates = [dsl]
    if isinstance(dsl, DSLNode) and dsl.op == "and":
        candidates = list(dsl.children)

    for node in candidates:
        if not isinstance(node, DSLLeaf) or node.field != partition_key:
            continue
        if node.op == "eq":
            return [str(node.value)]
        if node.op == "in" and isinstance(node.value, (list, tuple, set, frozenset)):
            return [str(v) for v in node.value]

    logger.debug("Filter does not pin partition key %s", partition_key)
    return []

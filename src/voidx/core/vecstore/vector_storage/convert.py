"""Conversions between search-store models and pymilvus structures.

This module handles:
1. Resolving the requested fields into the final column set (reserved
   ``id`` / ``creator_id`` columns, indexable field expansion)
2. Building the pymilvus ``CollectionSchema``
3. Validating and converting dense and sparse vectors at the client boundary
4. Reading a ``describe_collection`` result back into a ``CollectionLayout``
"""

from __future__ import annotations

import logging
import numbers
from typing import Any, Dict, List, Mapping, Sequence

import numpy as np
from pymilvus import CollectionSchema, DataType, FieldSchema

from ..core.config import MAX_VARCHAR_LENGTH
from ..core.exceptions import EmbeddingError, InvalidArgumentError
from ..core.fields import (
    DENSE_PREFIX,
    FIELD_CREATOR_ID,
    FIELD_ID,
    SPARSE_PREFIX,
    dense_field_name,
    sparse_field_name,
)
from ..core.schemas import CollectionLayout, FieldType, VecField

logger = logging.getLogger(__name__)

COLLECTION_DESCRIPTION = "created by voidx"

_DATA_TYPES: Dict[FieldType, DataType] = {
    FieldType.INT64: DataType.INT64,
    FieldType.TEXT: DataType.VARCHAR,
    FieldType.DENSE_VECTOR: DataType.FLOAT_VECTOR,
    FieldType.SPARSE_VECTOR: DataType.SPARSE_FLOAT_VECTOR,
}
_FIELD_TYPES: Dict[DataType, FieldType] = {v: k for k, v in _DATA_TYPES.items()}
_VECTOR_TYPES = (DataType.FLOAT_VECTOR, DataType.SPARSE_FLOAT_VECTOR)


def convert_field_type(field_type: FieldType) -> DataType:
    try:
        return _DATA_TYPES[field_type]
    except KeyError:
        raise InvalidArgumentError(f"Unknown field type: {field_type!r}") from None


def resolve_fields(fields: Sequence[VecField]) -> List[VecField]:
    """Apply the primary-key and reserved-column rules to requested fields.

    * at most one primary field, and it must be INT64
    * without a primary, a field named ``id`` is promoted, or a reserved
      ``id`` column is appended
    * ``creator_id`` is appended when absent
    * only TEXT fields may be indexed

    Raises:
        InvalidArgumentError: If any rule is violated
    """
    if not fields:
        raise InvalidArgumentError("At least one field is required")

    names = [f.name for f in fields]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise InvalidArgumentError(
            "Duplicate field names", details={"fields": duplicates}
        )

    primaries = [f for f in fields if f.is_primary]
    if len(primaries) > 1:
        raise InvalidArgumentError(
            "Only one primary field is allowed",
            details={"fields": [f.name for f in primaries]},
        )

    resolved: List[VecField] = []
    for f in fields:
        if f.indexing and f.type != FieldType.TEXT:
            raise InvalidArgumentError(
                f"Only text fields can be indexed, field={f.name}, type={f.type.name}"
            )
        if not primaries and f.name == FIELD_ID:
            f = f.model_copy(update={"is_primary": True})
        if f.is_primary and (f.type != FieldType.INT64 or f.indexing):
            raise InvalidArgumentError(
                f"Primary field must be a non-indexed INT64, field={f.name}"
            )
        resolved.append(f)

    if FIELD_ID not in names and not primaries:
        resolved.append(VecField(name=FIELD_ID, type=FieldType.INT64, is_primary=True))
    if FIELD_CREATOR_ID not in names:
        resolved.append(VecField(name=FIELD_CREATOR_ID, type=FieldType.INT64))

    return resolved


def _field_schema(f: VecField, dimension: int) -> FieldSchema:
    dtype = convert_field_type(f.type)
    kwargs: Dict[str, Any] = {"description": f.description}
    if f.is_primary:
        kwargs.update(is_primary=True, auto_id=False)
    elif f.nullable:
        kwargs["nullable"] = True
    if dtype == DataType.VARCHAR:
        kwargs["max_length"] = MAX_VARCHAR_LENGTH
    elif dtype == DataType.FLOAT_VECTOR:
        kwargs["dim"] = dimension
    return FieldSchema(name=f.name, dtype=dtype, **kwargs)


def build_field_schemas(
    fields: Sequence[VecField], dimension: int, hybrid: bool
) -> List[FieldSchema]:
    """Expand resolved fields into Milvus columns.

    An indexable field ``F`` becomes ``F`` (VARCHAR), ``dense_F`` and, in
    hybrid mode, ``sparse_F``.
    """
    schemas: List[FieldSchema] = []
    for f in resolve_fields(fields):
        schemas.append(_field_schema(f, dimension))
        if not f.indexing:
            continue
        schemas.append(
            FieldSchema(
                name=dense_field_name(f.name),
                dtype=DataType.FLOAT_VECTOR,
                dim=dimension,
            )
        )
        if hybrid:
            schemas.append(
                FieldSchema(
                    name=sparse_field_name(f.name),
                    dtype=DataType.SPARSE_FLOAT_VECTOR,
                )
            )
    return schemas


def build_collection_schema(
    fields: Sequence[VecField], dimension: int, hybrid: bool
) -> CollectionSchema:
    return CollectionSchema(
        fields=build_field_schemas(fields, dimension, hybrid),
        description=COLLECTION_DESCRIPTION,
        enable_dynamic_field=False,
        auto_id=False,
    )


def to_dense_vectors(
    dense: Sequence[Sequence[float]], expected: int, dimension: int
) -> List[List[float]]:
    """Validate embedder output and convert it to float32 lists.

    Raises:
        EmbeddingError: On count or dimension mismatch, or NaN/infinite values
    """
    if dense is None:
        raise EmbeddingError("Embedder returned no dense vectors")
    if len(dense) != expected:
        raise EmbeddingError(
            f"Embedder returned {len(dense)} dense vectors for {expected} texts"
        )
    if expected == 0:
        return []

    try:
        arr = np.asarray(dense, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Dense vectors are not numeric: {e}") from e

    if arr.ndim != 2 or arr.shape[1] != dimension:
        raise EmbeddingError(
            f"Dense vector dimension mismatch, expected {dimension}",
            details={"shape": list(arr.shape)},
        )
    if not np.isfinite(arr).all():
        raise EmbeddingError("Dense vectors contain NaN or infinite values")
    return arr.tolist()


def to_sparse_vectors(
    sparse: Sequence[Mapping[Any, Any]], expected: int
) -> List[Dict[int, float]]:
    """Normalize sparse maps to ``{int index: float weight}``.

    Zero weights are dropped; pair order is irrelevant to Milvus.

    Raises:
        EmbeddingError: On count mismatch or invalid entries
    """
    if sparse is None:
        raise EmbeddingError("Embedder returned no sparse vectors")
    if len(sparse) != expected:
        raise EmbeddingError(
            f"Embedder returned {len(sparse)} sparse vectors for {expected} texts"
        )

    result: List[Dict[int, float]] = []
    for vec in sparse:
        converted: Dict[int, float] = {}
        for index, weight in vec.items():
            if not isinstance(weight, numbers.Real) or isinstance(weight, bool):
                raise EmbeddingError(f"Sparse weight for index {index} is not a number")
            try:
                key = int(index)
            except (TypeError, ValueError) as e:
                raise EmbeddingError(f"Sparse index is not an integer: {index!r}") from e
            if key < 0:
                raise EmbeddingError(f"Sparse index must not be negative: {key}")
            value = float(weight)
            if value != value or abs(value) == float("inf"):
                raise EmbeddingError("Sparse vectors contain NaN or infinite values")
            if value != 0.0:
                converted[key] = value
        result.append(converted)
    return result


def layout_from_description(name: str, description: Mapping[str, Any]) -> CollectionLayout:
    """Build a ``CollectionLayout`` from ``MilvusClient.describe_collection``."""
    primary = FIELD_ID
    scalar_fields: Dict[str, FieldType] = {}
    vector_fields: Dict[str, Any] = {}
    nullable_fields: List[str] = []

    for field in description.get("fields", []):
        field_name = field["name"]
        dtype = field.get("type")
        if field.get("nullable"):
            nullable_fields.append(field_name)
        if field.get("is_primary"):
            primary = field_name
        if dtype in _VECTOR_TYPES:
            vector_fields[field_name] = dtype
        else:
            scalar_fields[field_name] = _FIELD_TYPES.get(dtype, FieldType.UNKNOWN)

    indexing_fields = [
        f
        for f, t in scalar_fields.items()
        if t == FieldType.TEXT
        and vector_fields.get(f"{DENSE_PREFIX}{f}") == DataType.FLOAT_VECTOR
    ]
    sparse_fields = [
        f
        for f in indexing_fields
        if vector_fields.get(f"{SPARSE_PREFIX}{f}") == DataType.SPARSE_FLOAT_VECTOR
    ]

    generated = {dense_field_name(f) for f in indexing_fields}
    generated.update(sparse_field_name(f) for f in sparse_fields)
    document_vectors = {
        f: _FIELD_TYPES[t] for f, t in vector_fields.items() if f not in generated
    }

    return CollectionLayout(
        name=name,
        primary_field=primary,
        scalar_fields=scalar_fields,
        indexing_fields=indexing_fields,
        sparse_fields=sparse_fields,
        vector_fields=document_vectors,
        nullable_fields=nullable_fields,
    )

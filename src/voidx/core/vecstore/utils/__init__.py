"""Utility helpers for the vector search store."""

from .backend_utils import call_backend, check_cancelled
from .dsl_utils import compile_dsl, partitions_from_dsl
from .string_utils import (
    escape_milvus_string,
    partition_name,
    quote_milvus_string,
    validate_collection_name,
)

__all__ = [
    "call_backend",
    "check_cancelled",
    "compile_dsl",
    "partitions_from_dsl",
    "escape_milvus_string",
    "quote_milvus_string",
    "partition_name",
    "validate_collection_name",
]

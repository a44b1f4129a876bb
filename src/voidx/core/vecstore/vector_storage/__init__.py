"""Vector storage module for the search store.

This module handles everything that writes to Milvus:
- Materializing field definitions into a collection schema
- Creating dense and sparse indexes idempotently
- Batched document ingestion with partition routing

The manager lives in ``collection_manager`` and is imported from there; it
depends on the search store, which in turn depends on this package.
"""

from .convert import build_collection_schema, layout_from_description, resolve_fields
from .index_manager import IndexManager
from .indexer import DocumentIndexer, to_primary_key
from .partitions import PartitionRegistry

__all__ = [
    "build_collection_schema",
    "layout_from_description",
    "resolve_fields",
    "IndexManager",
    "DocumentIndexer",
    "PartitionRegistry",
    "to_primary_key",
]

"""Hybrid dense and sparse vector search store backed by Milvus."""

from .core.config import IndexSpec, ManagerConfig
from .core.exceptions import (
    BackendError,
    CollectionNotFoundError,
    ConfigurationError,
    ConflictError,
    EmbeddingError,
    InvalidArgumentError,
    InvalidDSLError,
    OperationCancelledError,
    TransientError,
    VecStoreException,
)
from .core.schemas import (
    CollectionLayout,
    CreateRequest,
    DropRequest,
    FieldType,
    IndexOptions,
    MultiMatch,
    RetrieveOptions,
    ScoredDocument,
    SearchStoreType,
    VecField,
    dsl_and,
    dsl_eq,
    dsl_in,
    dsl_like,
    dsl_ne,
    dsl_or,
    dsl_to_transport,
    load_dsl,
)
from .progress import InMemoryProgressBar, ProgressBar, ProgressState
from .search_store import MilvusSearchStore
from .vector_storage.collection_manager import MilvusManager, create_with_retry

__all__ = [
    # Manager and store
    "MilvusManager",
    "MilvusSearchStore",
    "ManagerConfig",
    "IndexSpec",
    "create_with_retry",
    # Schemas
    "VecField",
    "FieldType",
    "CreateRequest",
    "DropRequest",
    "CollectionLayout",
    "IndexOptions",
    "RetrieveOptions",
    "MultiMatch",
    "ScoredDocument",
    "SearchStoreType",
    # DSL
    "dsl_eq",
    "dsl_ne",
    "dsl_like",
    "dsl_in",
    "dsl_and",
    "dsl_or",
    "dsl_to_transport",
    "load_dsl",
    # Progress
    "ProgressBar",
    "InMemoryProgressBar",
    "ProgressState",
    # Exceptions
    "VecStoreException",
    "InvalidArgumentError",
    "InvalidDSLError",
    "CollectionNotFoundError",
    "TransientError",
    "ConflictError",
    "BackendError",
    "OperationCancelledError",
    "ConfigurationError",
    "EmbeddingError",
]

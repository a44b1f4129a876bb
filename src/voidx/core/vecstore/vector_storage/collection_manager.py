"""Collection lifecycle management for the Milvus search store.

This module provides the search-store manager: idempotent collection
creation (schema, indexes, load), dropping, and handing out search stores
bound to existing collections.
"""

import logging
import threading
from typing import Any, Dict, Optional

from ....providers.vector_store.milvus import get_client_from_env
from ...model.embedding.base import BaseEmbedding
from ...retry import RetryStrategy, call_with_retry
from ..core.config import ManagerConfig
from ..core.exceptions import (
    BackendError,
    CollectionNotFoundError,
    InvalidArgumentError,
    TransientError,
)
from ..core.schemas import CreateRequest, DropRequest, SearchStoreType
from ..search_store import MilvusSearchStore
from ..utils.backend_utils import call_backend, check_cancelled
from ..utils.string_utils import validate_collection_name
from .convert import build_collection_schema, layout_from_description
from .index_manager import IndexManager

logger = logging.getLogger(__name__)


def _load_state_name(state: Any) -> str:
    # pymilvus returns a LoadState enum; compatible clients may return strings
    return getattr(state, "name", str(state))


class MilvusManager:
    """Manager for search-store collections in Milvus.

    Concurrent lifecycle calls on the same collection are serialized with a
    per-collection lock; different collections proceed in parallel.
    """

    def __init__(self, config: ManagerConfig) -> None:
        self.config = config
        self.client = config.client
        self.embedder: BaseEmbedding = config.embedder
        self.index_manager = IndexManager(
            self.client,
            dense_index=config.dense_index,
            sparse_index=config.sparse_index,
        )
        self._collection_locks: Dict[str, threading.Lock] = {}
        self._collection_locks_lock = threading.Lock()

    @classmethod
    def from_env(
        cls,
        embedder: BaseEmbedding,
        uri_var: str = "MILVUS_URI",
        **overrides: Any,
    ) -> "MilvusManager":
        """Build a manager whose client is configured from environment variables.

        Args:
            embedder: Embedder used for indexing and retrieval
            uri_var: Environment variable holding the Milvus URI
            **overrides: Further ``ManagerConfig`` options
        """
        client = get_client_from_env(uri_var)
        return cls(ManagerConfig(client=client, embedder=embedder, **overrides))

    def get_type(self) -> SearchStoreType:
        return SearchStoreType.VECTOR

    def get_embedding(self) -> BaseEmbedding:
        return self.embedder

    def _get_collection_lock(self, collection_name: str) -> threading.Lock:
        """Get or create the lock of a collection with double-checked locking."""
        if collection_name in self._collection_locks:
            return self._collection_locks[collection_name]

        with self._collection_locks_lock:
            if collection_name not in self._collection_locks:
                self._collection_locks[collection_name] = threading.Lock()
            return self._collection_locks[collection_name]

    def create(
        self,
        request: CreateRequest,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Create a collection with its indexes and load it. Idempotent.

        Each step skips what already exists, so a partially failed call can be
        repeated.

        Raises:
            InvalidArgumentError: If the field definitions are invalid
            TransientError: If the collection is still loading
            CollectionNotFoundError: If the collection vanished while loading
            BackendError: If a Milvus call fails
            OperationCancelledError: If ``cancel_event`` was set
        """
        name = validate_collection_name(request.collection_name)
        hybrid = bool(self.config.enable_hybrid)
        schema = build_collection_schema(
            request.fields, self.embedder.dimensions(), hybrid
        )
        indexing_fields = [f.name for f in request.fields if f.indexing]

        with self._get_collection_lock(name):
            check_cancelled(cancel_event, "Create", collection=name)
            if call_backend(
                "has_collection", self.client.has_collection, collection_name=name
            ):
                logger.debug("Collection %s already exists, skipping creation", name)
            else:
                kwargs: Dict[str, Any] = {}
                if request.collection_meta:
                    kwargs["properties"] = dict(request.collection_meta)
                call_backend(
                    "create_collection",
                    self.client.create_collection,
                    collection_name=name,
                    schema=schema,
                    num_shards=self.config.shard_num,
                    **kwargs,
                )
                logger.info(
                    "Created collection %s (hybrid=%s, shards=%d)",
                    name,
                    hybrid,
                    self.config.shard_num,
                )

            check_cancelled(cancel_event, "Create", collection=name)
            call_backend(
                "create_index",
                self.index_manager.ensure_indexes,
                name,
                indexing_fields,
                hybrid,
                cancel_event=cancel_event,
            )

            check_cancelled(cancel_event, "Create", collection=name)
            if not self._load_collection(name):
                raise CollectionNotFoundError(
                    f"Collection {name} does not exist", details={"collection": name}
                )

    def drop(self, request: DropRequest) -> None:
        """Drop a collection and its indexes; a missing collection is a no-op."""
        name = validate_collection_name(request.collection_name)
        with self._get_collection_lock(name):
            if not call_backend(
                "has_collection", self.client.has_collection, collection_name=name
            ):
                logger.debug("Collection %s does not exist, nothing to drop", name)
                return
            call_backend(
                "drop_collection", self.client.drop_collection, collection_name=name
            )
        logger.info("Dropped collection %s", name)

    def get_search_store(self, collection_name: str) -> MilvusSearchStore:
        """
        Return a search store bound to an existing, loaded collection.

        Raises:
            CollectionNotFoundError: If the collection does not exist
            InvalidArgumentError: If the collection has sparse columns but
                hybrid search is disabled for this manager
            TransientError: If the collection is still loading
        """
        name = validate_collection_name(collection_name)
        with self._get_collection_lock(name):
            exists = call_backend(
                "has_collection", self.client.has_collection, collection_name=name
            )
            if not exists or not self._load_collection(name):
                raise CollectionNotFoundError(
                    f"Collection {name} does not exist", details={"collection": name}
                )
            description = call_backend(
                "describe_collection",
                self.client.describe_collection,
                collection_name=name,
            )

        layout = layout_from_description(name, description)
        if layout.sparse_fields and not self.config.enable_hybrid:
            raise InvalidArgumentError(
                f"Collection {name} has sparse columns but hybrid search is disabled",
                details={"sparse_fields": list(layout.sparse_fields)},
            )
        return MilvusSearchStore(self.config, layout)

    def _load_collection(self, collection_name: str) -> bool:
        """Make sure the collection is loaded.

        Returns:
            True if the collection is loaded, False if it does not exist
        """
        result = call_backend(
            "get_load_state",
            self.client.get_load_state,
            collection_name=collection_name,
        )
        state = result.get("state") if isinstance(result, dict) else result
        state_name = _load_state_name(state)

        if state_name == "NotLoad":
            call_backend(
                "load_collection",
                self.client.load_collection,
                collection_name=collection_name,
            )
            logger.info("Loaded collection %s", collection_name)
            return True
        if state_name == "Loaded":
            return True
        if state_name == "Loading":
            raise TransientError(
                f"Collection {collection_name} is loading, retry later",
                details={"collection": collection_name},
            )

        logger.debug(
            "Collection %s is in load state %s", collection_name, state_name
        )
        return False


def create_with_retry(
    manager: MilvusManager,
    request: CreateRequest,
    *,
    strategy: Optional[RetryStrategy] = None,
    max_retries: int = 3,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """Run ``manager.create`` again on transient and backend failures.

    Any other error propagates immediately.
    """
    call_with_retry(
        manager.create,
        request,
        retry_on=lambda e: isinstance(e, (TransientError, BackendError)),
        strategy=strategy,
        max_retries=max_retries,
        cancel_event=cancel_event,
    )

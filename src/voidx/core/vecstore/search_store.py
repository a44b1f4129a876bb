"""Search store bound to one Milvus collection."""

import logging
import threading
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from .core.config import ManagerConfig
from .core.schemas import (
    CollectionLayout,
    DSLLeaf,
    DSLNode,
    IndexOptions,
    RetrieveOptions,
    ScoredDocument,
)
from .retrieval.retriever import DocumentRetriever
from .utils.backend_utils import call_backend
from .utils.dsl_utils import compile_dsl
from .vector_storage.indexer import DocumentIndexer, to_primary_key
from .vector_storage.partitions import PartitionRegistry

logger = logging.getLogger(__name__)


class MilvusSearchStore:
    """Index, retrieve and delete documents of a single collection.

    Instances are handed out by ``MilvusManager.get_search_store``. The Milvus
    client is shared with the manager and never closed here.
    """

    def __init__(self, config: ManagerConfig, layout: CollectionLayout):
        self.config = config
        self.layout = layout
        self.client = config.client

        self._partitions = PartitionRegistry(self.client, layout.name)
        self._indexer = DocumentIndexer(
            client=self.client,
            layout=layout,
            embedder=config.embedder,
            partitions=self._partitions,
            batch_size=config.batch_size,
        )
        self._retriever = DocumentRetriever(
            client=self.client,
            layout=layout,
            embedder=config.embedder,
            partitions=self._partitions,
            dense_index=config.dense_index,
            sparse_index=config.sparse_index,
        )

    @property
    def collection_name(self) -> str:
        return self.layout.name

    def index(
        self,
        documents: Sequence[Mapping[str, Any]],
        options: Optional[IndexOptions] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[int]:
        """Embed and insert documents; see ``DocumentIndexer.index``."""
        return self._indexer.index(documents, options, cancel_event=cancel_event)

    def retrieve(
        self,
        query: str,
        options: Optional[RetrieveOptions] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ScoredDocument]:
        """Hybrid search; see ``DocumentRetriever.retrieve``."""
        return self._retriever.retrieve(query, options, cancel_event=cancel_event)

    def delete(self, ids: Iterable[Any]) -> None:
        """Delete rows by primary key. Missing ids are ignored."""
        pks = [to_primary_key(i) for i in ids]
        if not pks:
            return
        call_backend(
            "delete",
            self.client.delete,
            collection_name=self.collection_name,
            ids=pks,
        )
        logger.info("Deleted %d ids from %s", len(pks), self.collection_name)

    def delete_by_filter(self, dsl: Union[DSLLeaf, DSLNode]) -> None:
        """Delete every row matching the filter."""
        expr = compile_dsl(dsl, self.layout.scalar_fields)
        call_backend(
            "delete",
            self.client.delete,
            collection_name=self.collection_name,
            filter=expr,
        )
        logger.info("Deleted rows matching %s from %s", expr, self.collection_name)

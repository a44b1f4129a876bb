"""Hybrid retrieval over the indexable fields of a collection.

The query is embedded once. Every target field gets a dense ANN request and,
when it carries a sparse column, a sparse one; their hits are fused per
field, merged across fields and ranked.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ...model.embedding.base import BaseEmbedding
from ..core.config import DEFAULT_HNSW_SEARCH_EF, IndexSpec
from ..core.exceptions import (
    BackendError,
    CollectionNotFoundError,
    EmbeddingError,
    InvalidArgumentError,
    VecStoreException,
)
from ..core.fields import dense_field_name, sparse_field_name
from ..core.schemas import CollectionLayout, RetrieveOptions, ScoredDocument
from ..utils.backend_utils import call_backend, check_cancelled
from ..utils.dsl_utils import compile_dsl, partitions_from_dsl
from ..vector_storage.convert import to_dense_vectors, to_sparse_vectors
from ..vector_storage.partitions import PartitionRegistry
from .fusion import Hit, fuse_field, merge_fields, rank_results

logger = logging.getLogger(__name__)


def build_search_params(spec: IndexSpec, top_k: int) -> Dict[str, Any]:
    """Search parameters for a column indexed with ``spec``.

    HNSW needs ``ef >= limit``; it is raised to ``top_k`` when the default
    lower bound is smaller.
    """
    params: Dict[str, Any] = dict(spec.search_params)
    if spec.index_type.upper() == "HNSW":
        params["ef"] = max(int(params.get("ef", DEFAULT_HNSW_SEARCH_EF)), top_k)
    return {"metric_type": spec.metric_type, "params": params}


class DocumentRetriever:
    """Answers ``retrieve`` calls for one collection."""

    def __init__(
        self,
        client: Any,
        layout: CollectionLayout,
        embedder: BaseEmbedding,
        partitions: PartitionRegistry,
        dense_index: IndexSpec,
        sparse_index: IndexSpec,
    ):
        self.client = client
        self.layout = layout
        self.embedder = embedder
        self.partitions = partitions
        self.dense_index = dense_index
        self.sparse_index = sparse_index

    @property
    def collection_name(self) -> str:
        return self.layout.name

    def retrieve(
        self,
        query: str,
        options: Optional[RetrieveOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ScoredDocument]:
        """
        Search the collection and return the fused top-k documents.

        Args:
            query: Query text; overridden by ``multi_match.query`` when set
            options: Result size, fields, partitions, filter and fusion weight
            cancel_event: Checked before every sub-search

        Returns:
            Documents ordered by score descending, ties by id ascending

        Raises:
            InvalidArgumentError: Empty query or non-indexable target fields
            InvalidDSLError: If the filter does not compile
            EmbeddingError: If the query cannot be embedded
            CollectionNotFoundError: If the collection was dropped meanwhile
            BackendError: If any sub-search fails
            OperationCancelledError: If ``cancel_event`` was set
        """
        options = options or RetrieveOptions()
        if options.multi_match is not None and options.multi_match.query:
            query = options.multi_match.query
        if not query or not query.strip():
            raise InvalidArgumentError("Query cannot be empty")

        target_fields = self._target_fields(options)
        expr = (
            compile_dsl(options.filter, self.layout.scalar_fields)
            if options.filter is not None
            else ""
        )

        try:
            return self._search_fields(
                query, target_fields, expr, options, cancel_event
            )
        except BackendError as e:
            self._raise_if_dropped(e)
            raise

    def _search_fields(
        self,
        query: str,
        target_fields: List[str],
        expr: str,
        options: RetrieveOptions,
        cancel_event: Optional[threading.Event],
    ) -> List[ScoredDocument]:
        partition_names = self._resolve_partitions(options)
        if partition_names == []:
            logger.debug(
                "None of the requested partitions exist in %s", self.collection_name
            )
            return []

        check_cancelled(cancel_event, "Retrieval", collection=self.collection_name)
        hybrid = any(self.layout.is_hybrid(f) for f in target_fields)
        dense_vector, sparse_vector = self._embed_query(query, hybrid)

        per_field: List[List[ScoredDocument]] = []
        for field_name in target_fields:
            check_cancelled(
                cancel_event, "Retrieval", collection=self.collection_name, field=field_name
            )
            dense_hits = self._search(
                dense_field_name(field_name),
                dense_vector,
                self.dense_index,
                options.top_k,
                expr,
                partition_names,
            )

            sparse_hits: Optional[List[Hit]] = None
            if self.layout.is_hybrid(field_name):
                sparse_hits = []
                # an all-zero query has no sparse terms to match
                if sparse_vector:
                    check_cancelled(
                        cancel_event,
                        "Retrieval",
                        collection=self.collection_name,
                        field=field_name,
                    )
                    sparse_hits = self._search(
                        sparse_field_name(field_name),
                        sparse_vector,
                        self.sparse_index,
                        options.top_k,
                        expr,
                        partition_names,
                    )

            per_field.append(
                fuse_field(field_name, dense_hits, sparse_hits, options.dense_weight)
            )

        results = rank_results(
            merge_fields(per_field), options.top_k, options.score_threshold
        )
        logger.debug(
            "Retrieved %d documents from %s over fields %s",
            len(results),
            self.collection_name,
            target_fields,
        )
        return results

    def _raise_if_dropped(self, error: BackendError) -> None:
        """Report a failed search on a collection that no longer exists as missing."""
        try:
            exists = self.client.has_collection(collection_name=self.collection_name)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Could not check whether %s still exists: %s", self.collection_name, e
            )
            return
        if not exists:
            raise CollectionNotFoundError(
                f"Collection {self.collection_name} does not exist",
                details={"collection": self.collection_name},
            ) from error

    def _target_fields(self, options: RetrieveOptions) -> List[str]:
        if options.multi_match is not None:
            fields = list(dict.fromkeys(options.multi_match.fields))
            unknown = [f for f in fields if f not in self.layout.indexing_fields]
            if unknown:
                raise InvalidArgumentError(
                    "Fields are not indexable",
                    details={
                        "fields": unknown,
                        "indexing_fields": list(self.layout.indexing_fields),
                    },
                )
            return fields

        default_field = self.layout.default_field()
        if default_field is None:
            raise InvalidArgumentError(
                f"Collection {self.collection_name} has no indexable fields"
            )
        return [default_field]

    def _resolve_partitions(self, options: RetrieveOptions) -> Optional[List[str]]:
        """Milvus partition names to search, or None for all partitions."""
        values: List[str] = list(options.partitions)
        if not values and options.partition_key:
            values = partitions_from_dsl(options.filter, options.partition_key)
        if not values:
            return None
        return self.partitions.existing(values)

    def _embed_query(
        self, query: str, hybrid: bool
    ) -> Tuple[List[float], Optional[Dict[int, float]]]:
        try:
            if hybrid:
                dense, sparse = self.embedder.embed_strings_hybrid([query])
            else:
                dense, sparse = self.embedder.embed_strings([query]), None
        except VecStoreException:
            raise
        except Exception as e:  # noqa: BLE001
            raise EmbeddingError(f"Embedding query failed: {e}") from e

        dense_vector = to_dense_vectors(dense, 1, self.embedder.dimensions())[0]
        sparse_vector = to_sparse_vectors(sparse, 1)[0] if hybrid else None
        return dense_vector, sparse_vector

    def _search(
        self,
        anns_field: str,
        vector: Any,
        spec: IndexSpec,
        top_k: int,
        expr: str,
        partition_names: Optional[Sequence[str]],
    ) -> List[Hit]:
        kwargs: Dict[str, Any] = {}
        if partition_names is not None:
            kwargs["partition_names"] = list(partition_names)

        response = call_backend(
            "search",
            self.client.search,
            collection_name=self.collection_name,
            data=[vector],
            anns_field=anns_field,
            limit=top_k,
            filter=expr,
            output_fields=list(self.layout.scalar_fields),
            search_params=build_search_params(spec, top_k),
            **kwargs,
        )
        if not response:
            return []

        hits: List[Hit] = []
        for hit in response[0]:
            entity = hit.get("entity") or {}
            raw_id = hit.get("id")
            if raw_id is None:
                raw_id = hit.get(self.layout.primary_field)
            hits.append(
                Hit(
                    id=int(raw_id),
                    score=float(hit["distance"]),
                    fields=dict(entity),
                )
            )
        return hits

"""
Index management for search-store collections.

This module ensures that every indexable field of a collection carries its
dense ANN index and, in hybrid mode, its sparse inverted index. Index names
follow the persisted naming contract so that repeated runs skip what exists.
"""

import logging
import threading
from typing import Any, List, Optional, Set

from pymilvus import MilvusClient

from ..core.config import IndexSpec, default_dense_index, default_sparse_index
from ..core.fields import (
    dense_field_name,
    dense_index_name,
    sparse_field_name,
    sparse_index_name,
)
from ..utils.backend_utils import check_cancelled

logger = logging.getLogger(__name__)


def _is_index_not_found(error: Exception) -> bool:
    return "index not found" in str(error).lower()


class IndexManager:
    """
    Creates the vector indexes of a collection.

    ``create_index`` on ``MilvusClient`` blocks until the build has finished,
    so indexes are created one at a time in field order.
    """

    def __init__(
        self,
        client: Any,
        dense_index: Optional[IndexSpec] = None,
        sparse_index: Optional[IndexSpec] = None,
    ):
        """
        Initialize index manager.

        Args:
            client: ``pymilvus.MilvusClient`` or a compatible object
            dense_index: Index for ``dense_*`` columns, HNSW/IP if None
            sparse_index: Index for ``sparse_*`` columns, inverted/IP if None
        """
        self.client = client
        self.dense_index = dense_index or default_dense_index().with_metric("IP")
        self.sparse_index = sparse_index or default_sparse_index().with_metric("IP")

    def list_index_names(self, collection_name: str) -> Set[str]:
        """
        Names of the indexes already present on a collection.

        A freshly created collection may answer with "index not found"; that
        is treated as no indexes.
        """
        try:
            return set(self.client.list_indexes(collection_name=collection_name))
        except Exception as e:  # noqa: BLE001
            if _is_index_not_found(e):
                logger.debug("No indexes found on %s", collection_name)
                return set()
            raise

    def ensure_indexes(
        self,
        collection_name: str,
        indexing_fields: List[str],
        hybrid: bool,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """
        Create missing dense (and sparse) indexes for the given fields.

        Args:
            collection_name: Target collection
            indexing_fields: Fields ``F`` with a ``dense_F`` column
            hybrid: Also index ``sparse_F`` columns
            cancel_event: Checked before each index build

        Returns:
            Names of the indexes created by this call
        """
        existing = self.list_index_names(collection_name)
        created: List[str] = []

        for field_name in indexing_fields:
            targets = [
                (dense_field_name(field_name), dense_index_name(field_name), self.dense_index)
            ]
            if hybrid:
                targets.append(
                    (
                        sparse_field_name(field_name),
                        sparse_index_name(field_name),
                        self.sparse_index,
                    )
                )

            for column, index_name, spec in targets:
                if index_name in existing:
                    logger.debug(
                        "Index %s already exists on %s, skipping",
                        index_name,
                        collection_name,
                    )
                    continue
                check_cancelled(
                    cancel_event,
                    "Index creation",
                    collection=collection_name,
                    created=list(created),
                )

                index_params = MilvusClient.prepare_index_params()
                index_params.add_index(
                    field_name=column,
                    index_type=spec.index_type,
                    index_name=index_name,
                    metric_type=spec.metric_type,
                    params=dict(spec.params),
                )
                self.client.create_index(
                    collection_name=collection_name, index_params=index_params
                )
                created.append(index_name)
                logger.info(
                    "Created index %s on %s (type=%s, metric=%s)",
                    index_name,
                    collection_name,
                    spec.index_type,
                    spec.metric_type,
                )

        return created

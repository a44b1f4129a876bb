from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Final, Optional

from ...model.embedding.base import BaseEmbedding, SupportStatus
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE: Final[int] = 100
"""Number of documents embedded and inserted per batch."""

DEFAULT_SHARD_NUM: Final[int] = 1
"""Shard count used when creating a collection."""

DEFAULT_METRIC: Final[str] = "IP"
"""Default metric for both dense and sparse indexes."""

DEFAULT_DENSE_INDEX_TYPE: Final[str] = "HNSW"
DEFAULT_HNSW_PARAMS: Final[Dict[str, Any]] = {"M": 30, "efConstruction": 360}
"""HNSW build parameters for dense vector columns."""

DEFAULT_HNSW_SEARCH_EF: Final[int] = 64
"""Lower bound of ``ef`` at query time; raised to ``top_k`` when needed."""

DEFAULT_SPARSE_INDEX_TYPE: Final[str] = "SPARSE_INVERTED_INDEX"
DEFAULT_SPARSE_PARAMS: Final[Dict[str, Any]] = {"drop_ratio_build": 0.2}
"""Sparse inverted index build parameters."""

MAX_VARCHAR_LENGTH: Final[int] = 65535
"""Maximum length of every VARCHAR column."""

DEFAULT_RETRIEVE_TOP_K: Final[int] = 4
DEFAULT_DENSE_WEIGHT: Final[float] = 0.5
"""Weight of the normalized dense score in hybrid fusion."""


@dataclass(frozen=True)
class IndexSpec:
    """Index definition applied to a vector column.

    Attributes:
        index_type: Milvus index type (e.g. HNSW, IVF_FLAT, SPARSE_INVERTED_INDEX).
        params: Index build parameters.
        metric_type: Metric; filled from the manager's metric when None.
        search_params: Extra parameters passed with every search on the column.
    """

    index_type: str
    params: Dict[str, Any] = field(default_factory=dict)
    metric_type: Optional[str] = None
    search_params: Dict[str, Any] = field(default_factory=dict)

    def with_metric(self, metric_type: str) -> "IndexSpec":
        if self.metric_type:
            return self
        return IndexSpec(
            index_type=self.index_type,
            params=dict(self.params),
            metric_type=metric_type,
            search_params=dict(self.search_params),
        )


def default_dense_index() -> IndexSpec:
    return IndexSpec(
        index_type=DEFAULT_DENSE_INDEX_TYPE, params=DEFAULT_HNSW_PARAMS.copy()
    )


def default_sparse_index() -> IndexSpec:
    return IndexSpec(
        index_type=DEFAULT_SPARSE_INDEX_TYPE,
        params=DEFAULT_SPARSE_PARAMS.copy(),
        search_params={"drop_ratio_search": 0.0},
    )


@dataclass
class ManagerConfig:
    """Configuration of a Milvus search-store manager.

    Attributes:
        client: ``pymilvus.MilvusClient`` (or a compatible object); required.
        embedder: Embedder capability; required.
        enable_hybrid: Enable sparse columns and hybrid retrieval. Defaults to
            whether the embedder supports sparse output.
        dense_index: Index for ``dense_*`` columns.
        dense_metric: Metric for dense indexes and searches.
        sparse_index: Index for ``sparse_*`` columns.
        sparse_metric: Metric for sparse indexes and searches.
        shard_num: Shard count fixed at collection creation.
        batch_size: Documents per indexing batch.
    """

    client: Any = None
    embedder: Optional[BaseEmbedding] = None
    enable_hybrid: Optional[bool] = None
    dense_index: Optional[IndexSpec] = None
    dense_metric: str = ""
    sparse_index: Optional[IndexSpec] = None
    sparse_metric: str = ""
    shard_num: int = 0
    batch_size: int = 0

    def __post_init__(self) -> None:
        """Validate required collaborators and fill unset options."""
        if self.client is None:
            raise ConfigurationError("Milvus client not provided")
        if self.embedder is None:
            raise ConfigurationError("Embedder not provided")

        supports_sparse = (
            self.embedder.support_status() == SupportStatus.DENSE_AND_SPARSE
        )
        if self.enable_hybrid is None:
            self.enable_hybrid = supports_sparse
        elif self.enable_hybrid and not supports_sparse:
            logger.warning(
                "Embedder does not support sparse vectors, hybrid search is disabled"
            )
            self.enable_hybrid = False

        if not self.dense_metric:
            self.dense_metric = DEFAULT_METRIC
        if self.dense_index is None:
            self.dense_index = default_dense_index()
        self.dense_index = self.dense_index.with_metric(self.dense_metric)

        if not self.sparse_metric:
            self.sparse_metric = DEFAULT_METRIC
        if self.sparse_index is None:
            self.sparse_index = default_sparse_index()
        self.sparse_index = self.sparse_index.with_metric(self.sparse_metric)

        if self.shard_num < 0 or self.batch_size < 0:
            raise ConfigurationError(
                "shard_num and batch_size must not be negative",
                details={"shard_num": self.shard_num, "batch_size": self.batch_size},
            )
        if self.shard_num == 0:
            self.shard_num = DEFAULT_SHARD_NUM
        if self.batch_size == 0:
            self.batch_size = DEFAULT_BATCH_SIZE

"""Batched ingestion of documents into a search-store collection.

Documents are validated as a whole before anything is written. They are then
embedded and inserted batch by batch, in input order. Within a batch every
contiguous partition run is one insert, and the progress bar advances after
each of them.
"""

import concurrent.futures
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ...model.embedding.base import BaseEmbedding
from ..core.config import DEFAULT_BATCH_SIZE
from ..core.exceptions import EmbeddingError, InvalidArgumentError, VecStoreException
from ..core.fields import dense_field_name, sparse_field_name
from ..core.schemas import CollectionLayout, FieldType, IndexOptions
from ..progress.progress_bar import ProgressBar
from ..utils.backend_utils import call_backend, check_cancelled
from ..utils.string_utils import partition_name
from .convert import to_dense_vectors, to_sparse_vectors
from .partitions import PartitionRegistry

logger = logging.getLogger(__name__)

MAX_EMBED_WORKERS = 4

_EmbeddedField = Tuple[List[List[float]], Optional[List[Dict[int, float]]]]


@dataclass
class _PreparedDocument:
    id: int
    row: Dict[str, Any]
    texts: Dict[str, str]
    partition: Optional[str] = None
    dropped: List[str] = field(default_factory=list)


def to_primary_key(value: Any) -> int:
    """Convert a primary key value to ``int``.

    Accepts ints, integral floats and decimal strings; bools are rejected.

    Raises:
        InvalidArgumentError: If the value has no integer form
    """
    if isinstance(value, bool) or value is None:
        raise InvalidArgumentError(f"Primary key must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidArgumentError(f"Primary key must be an integer, got {value!r}")
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidArgumentError(
            f"Primary key must be an integer, got {value!r}"
        ) from None


class DocumentIndexer:
    """Embeds and writes documents into one collection."""

    def __init__(
        self,
        client: Any,
        layout: CollectionLayout,
        embedder: BaseEmbedding,
        partitions: PartitionRegistry,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size < 1:
            raise InvalidArgumentError("batch_size must be at least 1")
        self.client = client
        self.layout = layout
        self.embedder = embedder
        self.partitions = partitions
        self.batch_size = batch_size

    @property
    def collection_name(self) -> str:
        return self.layout.name

    def index(
        self,
        documents: Sequence[Mapping[str, Any]],
        options: Optional[IndexOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[int]:
        """
        Index documents and return their primary keys in input order.

        Args:
            documents: Rows keyed by field name
            options: Partition routing, fields to embed and progress reporting
            cancel_event: Checked before every batch

        Returns:
            Primary keys of the inserted rows

        Raises:
            InvalidArgumentError: If any document is invalid (nothing is written)
            EmbeddingError: If the embedder fails or returns malformed vectors
            BackendError: If a Milvus call fails
            OperationCancelledError: If ``cancel_event`` was set

        Failures after the first insert leave earlier inserts committed; their
        ids are in ``error.details["written_ids"]``.
        """
        options = options or IndexOptions()
        progress = options.progress_bar
        written: List[int] = []

        try:
            embed_fields = self._resolve_embed_fields(options)
            precomputed = self._precomputed_columns(embed_fields)
            prepared = [
                self._prepare(i, doc, embed_fields, precomputed, options)
                for i, doc in enumerate(documents)
            ]
            self._log_dropped_keys(prepared)

            for start in range(0, len(prepared), self.batch_size):
                check_cancelled(
                    cancel_event,
                    "Indexing",
                    collection=self.collection_name,
                    batch_start=start,
                )
                batch = prepared[start : start + self.batch_size]
                self._write_batch(batch, embed_fields, written, progress)
                logger.debug(
                    "Indexed batch of %d documents into %s (%d/%d)",
                    len(batch),
                    self.collection_name,
                    len(written),
                    len(prepared),
                )
        except Exception as e:
            if progress is not None:
                progress.report_error(e)
            if isinstance(e, VecStoreException):
                e.details["written_ids"] = list(written)
            raise

        if prepared:
            logger.info(
                "Indexed %d documents into %s", len(written), self.collection_name
            )
        return written

    def _resolve_embed_fields(self, options: IndexOptions) -> List[str]:
        if options.indexing_fields is None:
            return list(self.layout.indexing_fields)

        unknown = [
            f for f in options.indexing_fields if f not in self.layout.indexing_fields
        ]
        if unknown:
            raise InvalidArgumentError(
                "Fields are not indexable",
                details={
                    "fields": unknown,
                    "indexing_fields": list(self.layout.indexing_fields),
                },
            )
        # keep order, drop duplicates
        return list(dict.fromkeys(options.indexing_fields))

    def _precomputed_columns(self, embed_fields: List[str]) -> Dict[str, FieldType]:
        """Generated vector columns of indexable fields not embedded this call.

        Milvus rejects rows without them, so documents must carry the vectors.
        """
        columns: Dict[str, FieldType] = {}
        for f in self.layout.indexing_fields:
            if f in embed_fields:
                continue
            columns[dense_field_name(f)] = FieldType.DENSE_VECTOR
            if self.layout.is_hybrid(f):
                columns[sparse_field_name(f)] = FieldType.SPARSE_VECTOR
        return columns

    def _precomputed_vector(
        self, doc_id: int, column: str, column_type: FieldType, value: Any
    ) -> Any:
        if value is None:
            raise InvalidArgumentError(
                f"Document {doc_id} needs a vector for '{column}' because its "
                "field is not embedded in this call",
                details={"id": doc_id, "fields": [column]},
            )
        try:
            if column_type == FieldType.SPARSE_VECTOR:
                if not isinstance(value, Mapping):
                    raise EmbeddingError("Sparse vector must be a mapping")
                return to_sparse_vectors([value], 1)[0]
            return to_dense_vectors([value], 1, self.embedder.dimensions())[0]
        except EmbeddingError as e:
            raise InvalidArgumentError(
                f"Document {doc_id} has an invalid vector in '{column}': {e.message}",
                details={"id": doc_id, "fields": [column]},
            ) from e

    def _prepare(
        self,
        position: int,
        document: Mapping[str, Any],
        embed_fields: List[str],
        precomputed: Dict[str, FieldType],
        options: IndexOptions,
    ) -> _PreparedDocument:
        if not isinstance(document, Mapping):
            raise InvalidArgumentError(
                f"Document at position {position} is not a mapping"
            )

        primary = self.layout.primary_field
        if document.get(primary) is None:
            raise InvalidArgumentError(
                f"Document at position {position} has no primary key '{primary}'"
            )
        doc_id = to_primary_key(document[primary])

        texts: Dict[str, str] = {}
        for f in embed_fields:
            text = document.get(f)
            if not isinstance(text, str) or not text:
                raise InvalidArgumentError(
                    f"Document {doc_id} needs a non-empty string for field '{f}'"
                )
            texts[f] = text

        writable = set(self.layout.writable_fields())
        row = {k: v for k, v in document.items() if k in writable}
        row[primary] = doc_id
        dropped = [k for k in document if k not in writable and k not in precomputed]

        for column, column_type in precomputed.items():
            row[column] = self._precomputed_vector(
                doc_id, column, column_type, document.get(column)
            )

        missing = [f for f in self.layout.required_fields() if row.get(f) is None]
        if missing:
            raise InvalidArgumentError(
                f"Document {doc_id} has no value for required fields",
                details={"id": doc_id, "fields": missing},
            )

        partition: Optional[str] = None
        if options.partition is not None:
            partition = options.partition
        elif options.partition_key:
            value = document.get(options.partition_key)
            if value is None:
                raise InvalidArgumentError(
                    f"Document {doc_id} has no value for partition key "
                    f"'{options.partition_key}'"
                )
            partition = str(value)
        if partition is not None:
            # fail before writing anything if the name is unusable
            partition_name(partition)

        return _PreparedDocument(
            id=doc_id, row=row, texts=texts, partition=partition, dropped=dropped
        )

    def _log_dropped_keys(self, prepared: List[_PreparedDocument]) -> None:
        dropped = sorted({k for p in prepared for k in p.dropped})
        if dropped:
            logger.debug(
                "Dropping keys not in the schema of %s: %s",
                self.collection_name,
                dropped,
            )

    def _write_batch(
        self,
        batch: List[_PreparedDocument],
        embed_fields: List[str],
        written: List[int],
        progress: Optional[ProgressBar],
    ) -> None:
        """Embed a batch and insert it as one call per contiguous partition run.

        ``written`` and the progress bar advance after every committed run.
        """
        vectors = self._embed_batch(batch, embed_fields)

        rows: List[Dict[str, Any]] = []
        for i, p in enumerate(batch):
            row = dict(p.row)
            for f, (dense, sparse) in vectors.items():
                row[dense_field_name(f)] = dense[i]
                if sparse is not None:
                    row[sparse_field_name(f)] = sparse[i]
            rows.append(row)

        pairs = zip(batch, rows)
        for partition, group in itertools.groupby(
            pairs, key=lambda pair: pair[0].partition
        ):
            run = list(group)
            kwargs: Dict[str, Any] = {}
            if partition is not None:
                kwargs["partition_name"] = self.partitions.ensure(partition)
            call_backend(
                "insert",
                self.client.insert,
                collection_name=self.collection_name,
                data=[row for _, row in run],
                **kwargs,
            )
            written.extend(p.id for p, _ in run)
            if progress is not None:
                progress.add_n(len(run))

    def _embed_batch(
        self, batch: List[_PreparedDocument], embed_fields: List[str]
    ) -> Dict[str, _EmbeddedField]:
        if not embed_fields:
            return {}

        texts = {f: [p.texts[f] for p in batch] for f in embed_fields}
        if len(embed_fields) == 1:
            f = embed_fields[0]
            return {f: self._embed_field(f, texts[f])}

        workers = min(len(embed_fields), MAX_EMBED_WORKERS)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                f: executor.submit(self._embed_field, f, texts[f]) for f in embed_fields
            }
            return {f: future.result() for f, future in futures.items()}

    def _embed_field(self, field_name: str, texts: List[str]) -> _EmbeddedField:
        hybrid = self.layout.is_hybrid(field_name)
        try:
            if hybrid:
                dense, sparse = self.embedder.embed_strings_hybrid(texts)
            else:
                dense, sparse = self.embedder.embed_strings(texts), None
        except VecStoreException:
            raise
        except Exception as e:  # noqa: BLE001
            raise EmbeddingError(
                f"Embedding field '{field_name}' failed: {e}",
                details={"field": field_name},
            ) from e

        dense_vectors = to_dense_vectors(dense, len(texts), self.embedder.dimensions())
        sparse_vectors = to_sparse_vectors(sparse, len(texts)) if hybrid else None
        return dense_vectors, sparse_vectors

"""Tests for DocumentIndexer.

Covers document validation, batching, partition routing, multi-field
embedding, partial-failure reporting and cancellation.
"""

import threading
from unittest.mock import Mock

import pytest

from voidx.core.vecstore.core.exceptions import (
    BackendError,
    EmbeddingError,
    InvalidArgumentError,
    OperationCancelledError,
)
from voidx.core.vecstore.core.schemas import (
    CreateRequest,
    FieldType,
    IndexOptions,
    VecField,
)
from voidx.core.vecstore.progress import InMemoryProgressBar
from voidx.core.vecstore.vector_storage.indexer import DocumentIndexer, to_primary_key


@pytest.fixture
def tenant_fields(text_fields):
    return text_fields + [
        VecField(name="title", type=FieldType.TEXT, indexing=True),
        VecField(name="tenant", type=FieldType.TEXT, nullable=True),
    ]


def open_store(make_manager, embedder, fields, **overrides):
    manager = make_manager(embedder, **overrides)
    manager.create(CreateRequest(collection_name="kb", fields=fields))
    return manager.get_search_store("kb")


def doc(pk, text="alpha beta", **extra):
    return {"id": pk, "text_content": text, "title": f"title {pk}", "creator_id": 7, **extra}


class TestToPrimaryKey:
    @pytest.mark.parametrize("value,expected", [(5, 5), (5.0, 5), ("42", 42), (" 7 ", 7)])
    def test_accepted(self, value, expected):
        assert to_primary_key(value) == expected

    @pytest.mark.parametrize("value", [True, None, 1.5, "abc"])
    def test_rejected(self, value):
        with pytest.raises(InvalidArgumentError):
            to_primary_key(value)


class TestIndexing:
    def test_returns_ids_in_input_order(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields, batch_size=2)

        ids = store.index([doc(3), doc("1"), doc(2.0)])

        assert ids == [3, 1, 2]
        assert set(fake_client.rows("kb")) == {1, 2, 3}
        assert fake_client.calls.count("insert") == 2

    def test_rows_carry_vectors(self, fake_client, make_manager, hybrid_embedder, tenant_fields):
        store = open_store(make_manager, hybrid_embedder, tenant_fields)

        store.index([doc(1, text="hello world")])

        row = fake_client.rows("kb")[1]
        assert len(row["dense_text_content"]) == 8
        assert len(row["dense_title"]) == 8
        assert row["sparse_text_content"]
        assert all(isinstance(k, int) for k in row["sparse_text_content"])
        assert row["text_content"] == "hello world"

    def test_each_field_embedded_once_per_batch(self, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields, batch_size=10)

        store.index([doc(1, text="a"), doc(2, text="b")])

        assert sorted(dense_embedder.calls) == [["a", "b"], ["title 1", "title 2"]]

    def test_indexing_fields_subset(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)
        stored_vector = [0.5, 0.5, 0.5, 0.5]

        store.index(
            [doc(1, title="only title", dense_text_content=stored_vector)],
            IndexOptions(indexing_fields=["title", "title"]),
        )

        assert dense_embedder.calls == [["only title"]]
        row = fake_client.rows("kb")[1]
        assert row["dense_text_content"] == stored_vector
        assert len(row["dense_title"]) == 4

    def test_unknown_keys_dropped(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        store.index([doc(1, extra="ignored", dense_title="not-a-vector")])

        row = fake_client.rows("kb")[1]
        assert "extra" not in row
        assert row["dense_title"] != "not-a-vector"

    def test_empty_input(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        assert store.index([]) == []
        assert "insert" not in fake_client.calls

    def test_progress_advanced_per_batch(self, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields, batch_size=2)
        progress = InMemoryProgressBar(5)

        store.index([doc(i) for i in range(5)], IndexOptions(progress_bar=progress))

        percent, _, error = progress.get_progress()
        assert percent == 100
        assert error == ""


class TestValidation:
    @pytest.mark.parametrize(
        "bad",
        [
            {"text_content": "no id", "title": "t"},
            {"id": 2, "text_content": "", "title": "t"},
            {"id": 2, "text_content": 12, "title": "t"},
            {"id": True, "text_content": "x", "title": "t"},
            ["not", "a", "mapping"],
        ],
    )
    def test_nothing_written_on_invalid_document(self, fake_client, make_manager, dense_embedder, tenant_fields, bad):
        store = open_store(make_manager, dense_embedder, tenant_fields, batch_size=1)

        with pytest.raises(InvalidArgumentError):
            store.index([doc(1), bad])

        assert "insert" not in fake_client.calls
        assert dense_embedder.calls == []

    def test_non_indexable_field_requested(self, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        with pytest.raises(InvalidArgumentError, match="not indexable") as exc_info:
            store.index([doc(1)], IndexOptions(indexing_fields=["tenant"]))

        assert exc_info.value.details["fields"] == ["tenant"]
        assert exc_info.value.details["written_ids"] == []

    def test_missing_required_column(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)
        without_creator = doc(2)
        del without_creator["creator_id"]

        with pytest.raises(InvalidArgumentError, match="required fields") as exc_info:
            store.index([doc(1), without_creator])

        assert exc_info.value.details["fields"] == ["creator_id"]
        assert "insert" not in fake_client.calls

    def test_nullable_column_may_be_absent(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        store.index([doc(1)])

        assert "tenant" not in fake_client.rows("kb")[1]

    def test_unembedded_field_needs_stored_vector(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        with pytest.raises(InvalidArgumentError, match="dense_text_content") as exc_info:
            store.index([doc(1)], IndexOptions(indexing_fields=["title"]))

        assert exc_info.value.details["fields"] == ["dense_text_content"]
        assert "insert" not in fake_client.calls
        assert dense_embedder.calls == []

    def test_stored_vector_checked(self, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        with pytest.raises(InvalidArgumentError, match="invalid vector"):
            store.index(
                [doc(1, dense_text_content=[0.1, 0.2])],
                IndexOptions(indexing_fields=["title"]),
            )

    def test_missing_partition_key_value(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        with pytest.raises(InvalidArgumentError, match="partition key"):
            store.index([doc(1, tenant="a"), doc(2)], IndexOptions(partition_key="tenant"))

        assert "insert" not in fake_client.calls

    def test_batch_size_must_be_positive(self):
        with pytest.raises(InvalidArgumentError):
            DocumentIndexer(Mock(), Mock(), Mock(), Mock(), batch_size=0)


class TestPartitions:
    def test_partition_key_routes_contiguous_runs(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)
        docs = [
            doc(1, tenant="a"),
            doc(2, tenant="a"),
            doc(3, tenant="b"),
            doc(4, tenant="a"),
        ]

        store.index(docs, IndexOptions(partition_key="tenant"))

        assert fake_client.calls.count("insert") == 3
        assert fake_client.calls.count("create_partition") == 2
        assert [fake_client.partition_of("kb", pk) for pk in (1, 2, 3, 4)] == [
            "partition_a",
            "partition_a",
            "partition_b",
            "partition_a",
        ]

    def test_explicit_partition_wins(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        store.index(
            [doc(1, tenant="a")],
            IndexOptions(partition="archive", partition_key="tenant"),
        )

        assert fake_client.partition_of("kb", 1) == "partition_archive"

    def test_default_partition(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)

        store.index([doc(1)])

        assert fake_client.partition_of("kb", 1) == "_default"
        assert "create_partition" not in fake_client.calls


class TestFailures:
    def test_written_ids_reported_after_partial_failure(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields, batch_size=2)
        progress = InMemoryProgressBar(4)
        insert = fake_client.insert
        attempts = []

        def flaky_insert(**kwargs):
            attempts.append(kwargs)
            if len(attempts) == 2:
                raise RuntimeError("insert rejected")
            return insert(**kwargs)

        fake_client.insert = flaky_insert

        with pytest.raises(BackendError, match="insert rejected") as exc_info:
            store.index([doc(i) for i in (1, 2, 3, 4)], IndexOptions(progress_bar=progress))

        assert exc_info.value.details["written_ids"] == [1, 2]
        assert set(fake_client.rows("kb")) == {1, 2}
        state = progress.get_state()
        assert (state.done, state.failed) == (2, 2)
        assert "insert rejected" in state.error_message

    def test_committed_partition_run_reported(self, fake_client, make_manager, dense_embedder, tenant_fields):
        store = open_store(make_manager, dense_embedder, tenant_fields)
        progress = InMemoryProgressBar(2)
        insert = fake_client.insert

        def reject_tenant_y(**kwargs):
            if kwargs.get("partition_name") == "partition_y":
                raise RuntimeError("partition y unavailable")
            return insert(**kwargs)

        fake_client.insert = reject_tenant_y

        with pytest.raises(BackendError, match="partition y unavailable") as exc_info:
            store.index(
                [doc(1, tenant="x"), doc(2, tenant="y")],
                IndexOptions(partition_key="tenant", progress_bar=progress),
            )

        assert list(fake_client.rows("kb")) == [1]
        assert exc_info.value.details["written_ids"] == [1]
        state = progress.get_state()
        assert (state.done, state.failed) == (1, 1)

    def test_embedder_error_wrapped(self, make_manager, embedder_factory, text_fields):
        embedder = embedder_factory(dim=4)
        embedder.embed_strings = Mock(side_effect=RuntimeError("rate limited"))
        store = open_store(make_manager, embedder, text_fields)

        with pytest.raises(EmbeddingError, match="rate limited") as exc_info:
            store.index([doc(1)])

        assert exc_info.value.details["field"] == "text_content"
        assert exc_info.value.details["written_ids"] == []

    def test_wrong_dimension(self, make_manager, embedder_factory, text_fields):
        embedder = embedder_factory(dim=4)
        store = open_store(make_manager, embedder, text_fields)
        embedder.embed_strings = Mock(return_value=[[0.1, 0.2]])

        with pytest.raises(EmbeddingError, match="dimension"):
            store.index([doc(1)])


class TestCancellation:
    def test_cancel_during_second_batch(self, fake_client, make_manager, embedder_factory, text_fields):
        event = threading.Event()
        embedder = embedder_factory(dim=4)
        embed = embedder.embed_strings

        def embed_and_cancel(texts):
            vectors = embed(texts)
            if len(embedder.calls) == 2:
                event.set()
            return vectors

        embedder.embed_strings = embed_and_cancel
        store = open_store(make_manager, embedder, text_fields, batch_size=100)
        docs = [{"id": i, "text_content": f"doc {i}", "creator_id": 7} for i in range(300)]

        with pytest.raises(OperationCancelledError) as exc_info:
            store.index(docs, cancel_event=event)

        assert exc_info.value.details["written_ids"] == list(range(200))
        assert len(fake_client.rows("kb")) == 200

    def test_cancel_before_start(self, fake_client, make_manager, dense_embedder, text_fields):
        store = open_store(make_manager, dense_embedder, text_fields)
        event = threading.Event()
        event.set()

        with pytest.raises(OperationCancelledError):
            store.index([doc(1)], cancel_event=event)

        assert "insert" not in fake_client.calls

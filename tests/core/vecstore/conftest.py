"""Shared fixtures for search-store tests.

``FakeMilvusClient`` keeps collections in memory and implements the subset of
``pymilvus.MilvusClient`` the search store calls, including an evaluator for
the boolean expressions produced by ``compile_dsl``. ``HashEmbedder`` derives
non-negative, L2-normalized vectors from md5 digests of the input tokens.
"""

import hashlib
import math
import re
import threading
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from voidx.core.model.embedding.base import BaseEmbedding, SupportStatus
from voidx.core.vecstore.core.config import ManagerConfig
from voidx.core.vecstore.core.schemas import FieldType, VecField
from voidx.core.vecstore.vector_storage.collection_manager import MilvusManager

DEFAULT_PARTITION = "_default"

# ------------------------- Filter evaluator -------------------------

_TOKEN_PATTERN = re.compile(
    r"\s*(?:"
    r'(?P<str>"(?:\\.|[^"\\])*")'
    r"|(?P<num>-?\d+(?:\.\d+)?)"
    r"|(?P<op>==|!=|&&|\|\||[()\[\],])"
    r"|(?P<word>[A-Za-z_][A-Za-z0-9_]*)"
    r")"
)


def _tokenize(expr: str) -> List[tuple]:
    tokens = []
    pos = 0
    expr = expr.rstrip()
    while pos < len(expr):
        match = _TOKEN_PATTERN.match(expr, pos)
        if match is None or match.end() == pos:
            raise ValueError(f"cannot tokenize filter at {pos}: {expr!r}")
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "str":
            tokens.append(("lit", re.sub(r"\\(.)", r"\1", text[1:-1])))
        elif kind == "num":
            tokens.append(("lit", float(text) if "." in text else int(text)))
        elif kind == "word" and text in ("true", "false"):
            tokens.append(("bool", text == "true"))
        elif kind == "word" and text in ("like", "in"):
            tokens.append(("op", text))
        else:
            tokens.append((kind, text))
        pos = match.end()
    return tokens


def _like_to_regex(pattern: str) -> "re.Pattern[str]":
    return re.compile(".*".join(re.escape(p) for p in pattern.split("%")), re.DOTALL)


class _FilterParser:
    """Recursive-descent parser building a predicate over a row."""

    def __init__(self, expr: str):
        self.tokens = _tokenize(expr)
        self.pos = 0

    def parse(self):
        predicate = self._or()
        if self.pos != len(self.tokens):
            raise ValueError(f"trailing tokens: {self.tokens[self.pos:]}")
        return predicate

    def _peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else (None, None)

    def _take(self, kind=None, text=None):
        tok = self._peek()
        if (kind and tok[0] != kind) or (text is not None and tok[1] != text):
            raise ValueError(f"unexpected token {tok}, wanted {kind} {text}")
        self.pos += 1
        return tok

    def _or(self):
        parts = [self._and()]
        while self._peek() == ("op", "||"):
            self._take()
            parts.append(self._and())
        return lambda row: any(p(row) for p in parts)

    def _and(self):
        parts = [self._primary()]
        while self._peek() == ("op", "&&"):
            self._take()
            parts.append(self._primary())
        return lambda row: all(p(row) for p in parts)

    def _primary(self):
        tok = self._peek()
        if tok == ("op", "("):
            self._take()
            inner = self._or()
            self._take("op", ")")
            return inner
        if tok[0] == "bool":
            self._take()
            value = tok[1]
            return lambda row: value
        field = self._take("word")[1]
        op = self._take("op")[1]
        if op == "==":
            value = self._take("lit")[1]
            return lambda row: row.get(field) == value
        if op == "!=":
            value = self._take("lit")[1]
            return lambda row: row.get(field) != value
        if op == "like":
            regex = _like_to_regex(self._take("lit")[1])
            return lambda row: isinstance(row.get(field), str) and bool(
                regex.fullmatch(row[field])
            )
        if op == "in":
            self._take("op", "[")
            values = []
            while self._peek() != ("op", "]"):
                values.append(self._take("lit")[1])
                if self._peek() == ("op", ","):
                    self._take()
            self._take("op", "]")
            return lambda row: row.get(field) in values
        raise ValueError(f"unsupported operator {op}")


def evaluate_filter(expr: str, row: Dict[str, Any]) -> bool:
    if not expr:
        return True
    return _FilterParser(expr).parse()(row)


# ------------------------- Fake Milvus client -------------------------


class FakeMilvusClient:
    """In-memory stand-in for ``pymilvus.MilvusClient``."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.load_states: Dict[str, str] = {}
        self.search_calls: List[Dict[str, Any]] = []
        self.fail_on: Dict[str, Exception] = {}
        self._lock = threading.Lock()

    def _record(self, method: str) -> None:
        with self._lock:
            self.calls.append(method)
        if method in self.fail_on:
            raise self.fail_on[method]

    def _collection(self, name: str) -> Dict[str, Any]:
        if name not in self.collections:
            raise RuntimeError(f"collection not found[collection={name}]")
        return self.collections[name]

    def has_collection(self, collection_name: str, **kwargs) -> bool:
        self._record("has_collection")
        return collection_name in self.collections

    def create_collection(self, collection_name: str, schema=None, **kwargs) -> None:
        self._record("create_collection")
        self.collections[collection_name] = {
            "schema": schema,
            "num_shards": kwargs.get("num_shards"),
            "properties": kwargs.get("properties", {}),
            "indexes": {},
            "partitions": {DEFAULT_PARTITION},
            "rows": {},
        }
        self.load_states[collection_name] = "NotLoad"

    def drop_collection(self, collection_name: str, **kwargs) -> None:
        self._record("drop_collection")
        self.collections.pop(collection_name, None)
        self.load_states.pop(collection_name, None)

    def describe_collection(self, collection_name: str, **kwargs) -> Dict[str, Any]:
        self._record("describe_collection")
        schema = self._collection(collection_name)["schema"]
        return {
            "collection_name": collection_name,
            "fields": [
                {
                    "name": f.name,
                    "type": f.dtype,
                    "params": dict(f.params),
                    "is_primary": f.is_primary,
                    "nullable": getattr(f, "nullable", False),
                }
                for f in schema.fields
            ],
        }

    def column_names(self, collection_name: str) -> List[str]:
        return [f.name for f in self.collections[collection_name]["schema"].fields]

    def list_indexes(self, collection_name: str, **kwargs) -> List[str]:
        self._record("list_indexes")
        return list(self._collection(collection_name)["indexes"])

    def create_index(self, collection_name: str, index_params, **kwargs) -> None:
        self._record("create_index")
        indexes = self._collection(collection_name)["indexes"]
        for param in index_params:
            indexes[param.index_name] = param

    def get_load_state(self, collection_name: str, **kwargs) -> Dict[str, Any]:
        self._record("get_load_state")
        state = self.load_states.get(collection_name, "NotExist")
        return {"state": SimpleNamespace(name=state)}

    def load_collection(self, collection_name: str, **kwargs) -> None:
        self._record("load_collection")
        self._collection(collection_name)
        self.load_states[collection_name] = "Loaded"

    def has_partition(self, collection_name: str, partition_name: str, **kwargs) -> bool:
        self._record("has_partition")
        return partition_name in self._collection(collection_name)["partitions"]

    def create_partition(self, collection_name: str, partition_name: str, **kwargs) -> None:
        self._record("create_partition")
        self._collection(collection_name)["partitions"].add(partition_name)

    def insert(
        self,
        collection_name: str,
        data: List[Dict[str, Any]],
        partition_name: Optional[str] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        self._record("insert")
        collection = self._collection(collection_name)
        partition = partition_name or DEFAULT_PARTITION
        if partition not in collection["partitions"]:
            raise RuntimeError(f"partition not found[partition={partition}]")
        primary = next(f.name for f in collection["schema"].fields if f.is_primary)
        required = [
            f.name
            for f in collection["schema"].fields
            if not f.is_primary and not getattr(f, "nullable", False)
        ]
        for row in data:
            missing = [name for name in required if row.get(name) is None]
            if missing:
                raise RuntimeError(
                    f"missed a field {missing[0]}[collection={collection_name}]"
                )
            unknown = set(row) - set(self.column_names(collection_name))
            if unknown:
                raise RuntimeError(f"unknown fields {sorted(unknown)}")
        for row in data:
            collection["rows"][row[primary]] = (partition, dict(row))
        return {"insert_count": len(data)}

    def rows(self, collection_name: str) -> Dict[int, Dict[str, Any]]:
        return {
            pk: row for pk, (_, row) in self.collections[collection_name]["rows"].items()
        }

    def partition_of(self, collection_name: str, pk: int) -> str:
        return self.collections[collection_name]["rows"][pk][0]

    def search(
        self,
        collection_name: str,
        data: List[Any],
        filter: str = "",
        limit: int = 10,
        output_fields: Optional[List[str]] = None,
        search_params: Optional[Dict[str, Any]] = None,
        partition_names: Optional[List[str]] = None,
        anns_field: Optional[str] = None,
        **kwargs,
    ) -> List[List[Dict[str, Any]]]:
        self._record("search")
        self.search_calls.append(
            {
                "anns_field": anns_field,
                "limit": limit,
                "filter": filter,
                "search_params": search_params,
                "partition_names": partition_names,
            }
        )
        collection = self._collection(collection_name)
        query = data[0]
        hits = []
        for pk, (partition, row) in collection["rows"].items():
            if partition_names is not None and partition not in partition_names:
                continue
            if anns_field not in row or not evaluate_filter(filter, row):
                continue
            vector = row[anns_field]
            if isinstance(query, dict):
                score = sum(w * vector.get(i, 0.0) for i, w in query.items())
                if score == 0.0:
                    continue
            else:
                score = sum(a * b for a, b in zip(query, vector))
            entity = {f: row[f] for f in (output_fields or []) if f in row}
            hits.append({"id": pk, "distance": score, "entity": entity})
        hits.sort(key=lambda h: (-h["distance"], h["id"]))
        return [hits[:limit]]

    def delete(
        self,
        collection_name: str,
        ids: Optional[List[int]] = None,
        filter: str = "",
        **kwargs,
    ) -> Dict[str, Any]:
        self._record("delete")
        rows = self._collection(collection_name)["rows"]
        if ids is not None:
            targets = [pk for pk in ids if pk in rows]
        else:
            targets = [pk for pk, (_, row) in rows.items() if evaluate_filter(filter, row)]
        for pk in targets:
            del rows[pk]
        return {"delete_count": len(targets)}


# ------------------------- Embedders -------------------------


def _tokens(text: str) -> List[str]:
    return text.lower().split()


class HashEmbedder(BaseEmbedding):
    """Deterministic embedder built on md5 digests of whitespace tokens."""

    def __init__(self, dim: int = 8, sparse: bool = False):
        self.dim = dim
        self.sparse = sparse
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    def _dense(self, text: str) -> List[float]:
        vector = [0.0] * self.dim
        for token in _tokens(text):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            for i in range(self.dim):
                vector[i] += digest[i % len(digest)] / 255.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector] if norm else vector

    @staticmethod
    def _sparse(text: str) -> Dict[int, float]:
        weights: Dict[int, float] = {}
        for token in _tokens(text):
            index = int(hashlib.md5(token.encode("utf-8")).hexdigest()[:6], 16)
            weights[index] = weights.get(index, 0.0) + 1.0
        return weights

    def embed_strings(self, texts: List[str]) -> List[List[float]]:
        with self._lock:
            self.calls.append(list(texts))
        return [self._dense(t) for t in texts]

    def embed_strings_hybrid(self, texts: List[str]):
        if not self.sparse:
            raise NotImplementedError("sparse embeddings are not supported")
        with self._lock:
            self.calls.append(list(texts))
        return [self._dense(t) for t in texts], [self._sparse(t) for t in texts]

    def dimensions(self) -> int:
        return self.dim

    def support_status(self) -> SupportStatus:
        return SupportStatus.DENSE_AND_SPARSE if self.sparse else SupportStatus.DENSE


# ------------------------- Fixtures -------------------------


@pytest.fixture
def fake_client() -> FakeMilvusClient:
    return FakeMilvusClient()


@pytest.fixture
def dense_embedder() -> HashEmbedder:
    return HashEmbedder(dim=4)


@pytest.fixture
def hybrid_embedder() -> HashEmbedder:
    return HashEmbedder(dim=8, sparse=True)


@pytest.fixture
def text_fields() -> List[VecField]:
    return [
        VecField(name="id", type=FieldType.INT64, is_primary=True),
        VecField(name="text_content", type=FieldType.TEXT, indexing=True),
    ]


@pytest.fixture
def make_manager(fake_client):
    """Factory building a ``MilvusManager`` over the fake client."""

    def _make(embedder: BaseEmbedding, **overrides: Any) -> MilvusManager:
        return MilvusManager(
            ManagerConfig(client=fake_client, embedder=embedder, **overrides)
        )

    return _make


@pytest.fixture
def embedder_factory():
    """``HashEmbedder`` class, for tests that need their own instances."""
    return HashEmbedder

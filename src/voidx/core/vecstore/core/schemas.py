"""Core data models and schemas for the vector search store.

This module defines Pydantic models for collection definitions, indexing and
retrieval options, scored results and the filter DSL. The DSL is a typed
tagged variant: ``DSLLeaf`` for comparisons and ``DSLNode`` for boolean
connectives, discriminated on ``op``.

All models use Pydantic v2 ConfigDict.
"""

from enum import Enum, IntEnum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..progress.progress_bar import ProgressBar
from .config import DEFAULT_DENSE_WEIGHT, DEFAULT_RETRIEVE_TOP_K
from .exceptions import InvalidDSLError
from .fields import FIELD_TEXT_CONTENT

DSL_TRANSPORT_KEY = "dsl"

# ------------------------- Enums -------------------------


class FieldType(IntEnum):
    """Logical column types of a collection."""

    UNKNOWN = 0
    INT64 = 1
    TEXT = 2
    DENSE_VECTOR = 3
    SPARSE_VECTOR = 4


class SearchStoreType(Enum):
    """Kinds of search store a manager can hand out."""

    VECTOR = "vector"
    TEXT = "text"

    def __str__(self) -> str:
        return self.value


class DSLOp(str, Enum):
    """Operators of the filter DSL."""

    EQ = "eq"
    NE = "ne"
    LIKE = "like"
    IN = "in"
    AND = "and"
    OR = "or"

    def __str__(self) -> str:
        return self.value


# ------------------------- Collection schemas -------------------------


class VecField(BaseModel):
    """A typed column of a collection."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Column name")
    type: FieldType = Field(..., description="Logical column type")
    description: str = Field(default="", description="Free-form description")
    nullable: bool = Field(default=False, description="Whether values may be null")
    is_primary: bool = Field(default=False, description="Primary key flag")
    indexing: bool = Field(
        default=False,
        description="Vectorize and ANN-index this column (TEXT fields only)",
    )


class CreateRequest(BaseModel):
    """Request model for creating a collection."""

    model_config = ConfigDict(frozen=True)

    collection_name: str = Field(..., description="Collection name")
    fields: List[VecField] = Field(..., description="Column definitions")
    collection_meta: Dict[str, str] = Field(
        default_factory=dict, description="Properties attached to the collection"
    )


class DropRequest(BaseModel):
    """Request model for dropping a collection."""

    model_config = ConfigDict(frozen=True)

    collection_name: str = Field(..., description="Collection name")


class CollectionLayout(BaseModel):
    """Schema of an existing collection as seen by the search store."""

    model_config = ConfigDict(frozen=True)

    name: str
    primary_field: str
    scalar_fields: Dict[str, FieldType] = Field(
        ..., description="Non-vector columns and their types"
    )
    indexing_fields: List[str] = Field(
        default_factory=list, description="Fields F with a dense_F column"
    )
    sparse_fields: List[str] = Field(
        default_factory=list, description="Indexing fields F with a sparse_F column"
    )
    vector_fields: Dict[str, FieldType] = Field(
        default_factory=dict,
        description="Vector columns supplied by documents, excluding dense_F/sparse_F",
    )
    nullable_fields: List[str] = Field(
        default_factory=list, description="Columns that accept null values"
    )

    def is_hybrid(self, field_name: str) -> bool:
        return field_name in self.sparse_fields

    def writable_fields(self) -> List[str]:
        """Columns copied from documents into rows."""
        return list(self.scalar_fields) + list(self.vector_fields)

    def required_fields(self) -> List[str]:
        """Writable columns, other than the primary key, that reject nulls."""
        return [
            f
            for f in self.writable_fields()
            if f != self.primary_field and f not in self.nullable_fields
        ]

    def default_field(self) -> Optional[str]:
        if FIELD_TEXT_CONTENT in self.indexing_fields:
            return FIELD_TEXT_CONTENT
        return self.indexing_fields[0] if self.indexing_fields else None


# ------------------------- DSL -------------------------


class DSLLeaf(BaseModel):
    """Comparison on a single field: eq, ne, like or in."""

    model_config = ConfigDict(frozen=True)

    op: Literal["eq", "ne", "like", "in"]
    field: str = Field(..., min_length=1)
    value: Any = None


class DSLNode(BaseModel):
    """Boolean connective over child expressions."""

    model_config = ConfigDict(frozen=True)

    op: Literal["and", "or"]
    children: List["DSL"] = Field(default_factory=list)


DSL = Annotated[Union[DSLLeaf, DSLNode], Field(discriminator="op")]

DSLNode.model_rebuild()

_DSL_ADAPTER: TypeAdapter = TypeAdapter(DSL)


def dsl_eq(field: str, value: Any) -> DSLLeaf:
    return DSLLeaf(op="eq", field=field, value=value)


def dsl_ne(field: str, value: Any) -> DSLLeaf:
    return DSLLeaf(op="ne", field=field, value=value)


def dsl_like(field: str, pattern: str) -> DSLLeaf:
    return DSLLeaf(op="like", field=field, value=pattern)


def dsl_in(field: str, values: Sequence[Any]) -> DSLLeaf:
    return DSLLeaf(op="in", field=field, value=list(values))


def dsl_and(*children: Union[DSLLeaf, DSLNode]) -> DSLNode:
    return DSLNode(op="and", children=list(children))


def dsl_or(*children: Union[DSLLeaf, DSLNode]) -> DSLNode:
    return DSLNode(op="or", children=list(children))


def dsl_to_transport(dsl: Union[DSLLeaf, DSLNode]) -> Dict[str, Any]:
    """Wrap a DSL tree in the untyped map used by generic option carriers."""
    return {DSL_TRANSPORT_KEY: dsl}


def load_dsl(
    src: Optional[Mapping[str, Any]],
) -> Optional[Union[DSLLeaf, DSLNode]]:
    """Extract a DSL tree from a transport map.

    Accepts either an already-typed tree or its ``model_dump()`` form under
    the ``"dsl"`` key.

    Raises:
        InvalidDSLError: If the map does not carry a valid tree.
    """
    if src is None:
        return None

    value = src.get(DSL_TRANSPORT_KEY)
    if isinstance(value, (DSLLeaf, DSLNode)):
        return value
    if not isinstance(value, Mapping):
        raise InvalidDSLError("load dsl failed", details={"keys": list(src)})
    try:
        return _DSL_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise InvalidDSLError(f"load dsl failed: {e}") from e


# ------------------------- Indexing and retrieval -------------------------


class IndexOptions(BaseModel):
    """Options of a single ``index`` call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    partition_key: Optional[str] = Field(
        default=None, description="Field whose value selects the target partition"
    )
    partition: Optional[str] = Field(
        default=None, description="Explicit target partition for every document"
    )
    indexing_fields: Optional[List[str]] = Field(
        default=None,
        description="Indexable fields to embed in this call; all when unset",
    )
    progress_bar: Optional[ProgressBar] = Field(
        default=None, description="Progress reporter updated after each batch"
    )


class MultiMatch(BaseModel):
    """Search several indexable fields with one query."""

    model_config = ConfigDict(frozen=True)

    fields: List[str] = Field(..., min_length=1)
    query: str = Field(default="", description="Overrides the retrieve query")


class RetrieveOptions(BaseModel):
    """Options of a single ``retrieve`` call."""

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(default=DEFAULT_RETRIEVE_TOP_K, ge=1)
    score_threshold: Optional[float] = Field(
        default=None, description="Drop fused results scoring below this value"
    )
    multi_match: Optional[MultiMatch] = None
    partition_key: Optional[str] = Field(
        default=None,
        description="Field used to derive partitions from the filter",
    )
    partitions: List[str] = Field(
        default_factory=list, description="Partition values to search; all if empty"
    )
    filter: Optional[DSL] = None
    dense_weight: float = Field(
        default=DEFAULT_DENSE_WEIGHT,
        ge=0.0,
        le=1.0,
        description="Weight of the normalized dense score in hybrid fusion",
    )


class ScoredDocument(BaseModel):
    """A retrieved row with its fused score."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Primary key")
    score: float = Field(..., description="Fused score, higher is better")
    fields: Dict[str, Any] = Field(
        default_factory=dict, description="Scalar column values"
    )
    matched_field: str = Field(..., description="Indexable field that scored best")
    dense_score: Optional[float] = Field(
        default=None, description="Raw dense score on the matched field"
    )
    sparse_score: Optional[float] = Field(
        default=None, description="Raw sparse score on the matched field"
    )

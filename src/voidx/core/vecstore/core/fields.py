"""Column and index naming for indexable fields.

These names are part of the persisted layout of every collection; renaming
any of them breaks existing collections.
"""

from typing import Final

FIELD_ID: Final[str] = "id"
FIELD_CREATOR_ID: Final[str] = "creator_id"
FIELD_TEXT_CONTENT: Final[str] = "text_content"

DENSE_PREFIX: Final[str] = "dense_"
SPARSE_PREFIX: Final[str] = "sparse_"


def dense_field_name(name: str) -> str:
    return f"{DENSE_PREFIX}{name}"


def dense_index_name(name: str) -> str:
    return f"index_dense_{name}"


def sparse_field_name(name: str) -> str:
    return f"{SPARSE_PREFIX}{name}"


def sparse_index_name(name: str) -> str:
    return f"index_sparse_{name}"

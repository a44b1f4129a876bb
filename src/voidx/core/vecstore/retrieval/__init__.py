"""
Retrieval module for the search store.

This module provides the query path:
- Dense and sparse ANN requests per indexable field
- Linear fusion of max-normalized scores
- Merging across fields and ranking
"""

from .fusion import Hit, fuse_field, merge_fields, rank_results
from .retriever import DocumentRetriever

__all__ = [
    "DocumentRetriever",
    "Hit",
    "fuse_field",
    "merge_fields",
    "rank_results",
]

"""
Vector store providers module.

This module provides connection helpers for the vector databases backing
the search store.
"""

from voidx.providers.vector_store.milvus import (
    MilvusConnectionManager,
    get_client,
    get_client_from_env,
)

__all__ = [
    "MilvusConnectionManager",
    "get_client",
    "get_client_from_env",
]

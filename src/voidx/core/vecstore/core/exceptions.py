"""Core exceptions for the vector search store.

This module defines the exception hierarchy raised by the search-store
manager, the indexer and the retriever. Callers branch on the class to decide
whether a retry makes sense (``TransientError``, ``BackendError``) or the
request itself is wrong (``InvalidArgumentError``).
"""

from typing import Optional


class VecStoreException(Exception):
    """Base exception for all search-store operations.

    Attributes:
        message: Human-readable error message
        details: Optional additional context or metadata
    """

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional additional context or metadata
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the exception."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidArgumentError(VecStoreException):
    """Exception raised for malformed requests.

    Covers empty required values, unsupported field types for indexing,
    documents missing their primary key or indexed text, and bad options.
    """

    pass


class InvalidDSLError(InvalidArgumentError):
    """Exception raised when a filter DSL cannot be compiled.

    Raised for unknown fields, operators applied to fields of the wrong type
    and values that have no representation in the filter language.
    """

    pass


class CollectionNotFoundError(VecStoreException):
    """Exception raised when the target collection does not exist."""

    pass


class TransientError(VecStoreException):
    """Exception raised when the backend is in an intermediate state.

    The collection is currently loading; the caller should retry with backoff.
    """

    pass


class ConflictError(VecStoreException):
    """Exception reserved for schema changes on an existing collection."""

    pass


class BackendError(VecStoreException):
    """Exception raised when the underlying vector database call fails.

    The original exception is always chained as ``__cause__``.
    """

    pass


class OperationCancelledError(VecStoreException):
    """Exception raised when the caller's cancel event was set."""

    pass


class ConfigurationError(VecStoreException):
    """Exception raised when manager configuration is invalid or missing."""

    pass


class EmbeddingError(VecStoreException):
    """Exception raised when the embedder fails or returns malformed vectors."""

    pass

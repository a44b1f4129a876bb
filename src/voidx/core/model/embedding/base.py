from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Dict, List, Tuple


class SupportStatus(IntEnum):
    """Which vector kinds an embedder can produce."""

    DENSE = 1
    DENSE_AND_SPARSE = 3


class BaseEmbedding(ABC):
    """Abstract base class for embedding models."""

    @abstractmethod
    def embed_strings(self, texts: List[str]) -> List[List[float]]:
        """
        Encode texts into dense vectors.

        Args:
            texts: Texts to encode

        Returns:
            One vector of length ``dimensions()`` per text, in input order.
            An empty input yields an empty list.
        """
        pass

    def embed_strings_hybrid(
        self, texts: List[str]
    ) -> Tuple[List[List[float]], List[Dict[int, float]]]:
        """
        Encode texts into dense vectors and sparse term weights.

        Only valid when ``support_status()`` is ``DENSE_AND_SPARSE``.

        Returns:
            Tuple of (dense vectors, sparse maps of term index to weight)
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} does not produce sparse vectors"
        )

    @abstractmethod
    def dimensions(self) -> int:
        """Get the dense embedding dimension."""
        pass

    def support_status(self) -> SupportStatus:
        """Get the vector kinds supported by this model."""
        return SupportStatus.DENSE

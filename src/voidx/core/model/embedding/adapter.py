from typing import Dict, List, Tuple

import requests

from ...retry import RetryWrapper
from ..model import EmbeddingModelConfig
from .base import BaseEmbedding, SupportStatus
from .dashscope import DashScopeEmbedding


def retry_on(e: Exception) -> bool:
    ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)

    if isinstance(e, requests.exceptions.HTTPError) and e.response is not None:
        status_code = e.response.status_code
        return status_code == 429 or 500 <= status_code < 600  # 429 and 5xx
    return isinstance(e, ERRORS)


def create_embedding_adapter(model_config: EmbeddingModelConfig) -> BaseEmbedding:
    """
    Creates an embedder from an EmbeddingModelConfig, retrying transport errors.
    """
    return EmbeddingModelAdapter(model_config)


class EmbeddingModelAdapter(BaseEmbedding):
    """Selects the provider implementation and retries its embed calls."""

    def __init__(self, model_config: EmbeddingModelConfig):
        self.model_config = model_config
        self._embedding_model = self._create_embedding_model()
        self._retry = RetryWrapper(
            max_retries=max(1, model_config.max_retries), retry_on=retry_on
        )

    def _create_embedding_model(self) -> BaseEmbedding:
        """Create the actual embedding model from configuration."""
        provider = self.model_config.model_provider.lower().strip()
        if provider == "dashscope":
            return DashScopeEmbedding(
                model=self.model_config.model_name,
                api_key=self.model_config.api_key,
                base_url=self.model_config.base_url,
                dimension=self.model_config.dimension,
                instruct=self.model_config.instruct,
                enable_sparse=self.model_config.enable_sparse,
            )
        raise ValueError(
            f"Unsupported model provider: {self.model_config.model_provider}"
        )

    def embed_strings(self, texts: List[str]) -> List[List[float]]:
        return self._retry.invoke(self._embedding_model.embed_strings, texts)

    def embed_strings_hybrid(
        self, texts: List[str]
    ) -> Tuple[List[List[float]], List[Dict[int, float]]]:
        return self._retry.invoke(self._embedding_model.embed_strings_hybrid, texts)

    def dimensions(self) -> int:
        return self._embedding_model.dimensions()

    def support_status(self) -> SupportStatus:
        return self._embedding_model.support_status()

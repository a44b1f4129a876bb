from .embedding import BaseEmbedding, DashScopeEmbedding, SupportStatus
from .model import EmbeddingModelConfig

__all__ = [
    "EmbeddingModelConfig",
    "BaseEmbedding",
    "DashScopeEmbedding",
    "SupportStatus",
]

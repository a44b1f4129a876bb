from .adapter import EmbeddingModelAdapter, create_embedding_adapter
from .base import BaseEmbedding, SupportStatus
from .dashscope import DashScopeEmbedding

__all__ = [
    "BaseEmbedding",
    "SupportStatus",
    "DashScopeEmbedding",
    "EmbeddingModelAdapter",
    "create_embedding_adapter",
]

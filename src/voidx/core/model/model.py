from typing import Optional

from pydantic import BaseModel


class EmbeddingModelConfig(BaseModel):
    model_name: str
    model_provider: str = "dashscope"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    dimension: int = 1024
    instruct: Optional[str] = None
    enable_sparse: bool = True
    max_retries: int = 3

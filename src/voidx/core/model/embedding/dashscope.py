from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import requests

from .base import BaseEmbedding, SupportStatus

DEFAULT_DIMENSION = 1024


class DashScopeEmbedding(BaseEmbedding):
    """
    DashScope text embedding model client.
    Supports dense and dense&sparse output of the text-embedding-v3/v4 API.
    """

    def __init__(
        self,
        model: str = "text-embedding-v4",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimension: int = DEFAULT_DIMENSION,
        instruct: Optional[str] = None,
        enable_sparse: bool = True,
    ):
        """
        Initialize DashScope embedding client.

        Args:
            model: Model name (default: text-embedding-v4)
            api_key: DashScope API key
            base_url: API base URL (defaults to DashScope embedding endpoint)
            dimension: Embedding dimension
            instruct: Optional instruction for embedding context
            enable_sparse: Report sparse support so hybrid collections can be built
        """
        self.model = model
        self.api_key = api_key
        self.base_url = (
            base_url
            or "https://dashscope.aliyuncs.com/api/v1/services/embeddings/text-embedding/text-embedding"
        )
        self.dimension = dimension
        self.instruct = instruct
        self.enable_sparse = enable_sparse
        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        """Get or create HTTP session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update(
                {
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                }
            )
        return self._session

    # DashScope API batch size limit (API says "should not be larger than 10")
    MAX_BATCH_SIZE = 10

    def _request(self, texts: List[str], output_type: str) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise RuntimeError("DASHSCOPE_API_KEY is required")

        session = self._get_session()
        items: List[Dict[str, Any]] = []

        for i in range(0, len(texts), self.MAX_BATCH_SIZE):
            batch_texts = texts[i : i + self.MAX_BATCH_SIZE]

            payload: Dict[str, Any] = {
                "model": self.model,
                "input": {"texts": batch_texts},
                "parameters": {
                    "dimension": self.dimension,
                    "output_type": output_type,
                },
            }
            if self.instruct:
                payload["parameters"]["instruct"] = self.instruct

            response = session.post(self.base_url, json=payload)
            response.raise_for_status()

            data = response.json()
            if "output" not in data or "embeddings" not in data["output"]:
                raise ValueError(f"Unexpected response format: {data}")

            # text_index is relative to the batch and may arrive out of order
            batch_items = sorted(
                data["output"]["embeddings"], key=lambda e: e.get("text_index", 0)
            )
            items.extend(batch_items)

        return items

    def embed_strings(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return [item["embedding"] for item in self._request(texts, "dense")]

    def embed_strings_hybrid(
        self, texts: List[str]
    ) -> Tuple[List[List[float]], List[Dict[int, float]]]:
        if not texts:
            return [], []
        items = self._request(texts, "dense&sparse")
        dense = [item["embedding"] for item in items]
        sparse = [
            {int(e["index"]): float(e["value"]) for e in item.get("sparse_embedding", [])}
            for item in items
        ]
        return dense, sparse

    def dimensions(self) -> int:
        return self.dimension

    def support_status(self) -> SupportStatus:
        if self.enable_sparse:
            return SupportStatus.DENSE_AND_SPARSE
        return SupportStatus.DENSE

"""
Milvus client provider.

Caches ``MilvusClient`` instances per endpoint so every manager in the
process shares one connection pool, and builds clients from environment
variables (``MILVUS_URI`` plus ``MILVUS_TOKEN`` or ``MILVUS_USER`` /
``MILVUS_PASSWORD``).
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Dict, Optional, Tuple

from pymilvus import MilvusClient

logger = logging.getLogger(__name__)

DEFAULT_URI_ENV = "MILVUS_URI"
TOKEN_ENV = "MILVUS_TOKEN"
USER_ENV = "MILVUS_USER"
PASSWORD_ENV = "MILVUS_PASSWORD"


class MilvusConnectionManager:
    """Thread-safe cache of Milvus clients keyed by (uri, token).

    Clients are shared by every manager built on them and stay open until
    ``clear()``.
    """

    def __init__(self) -> None:
        self._clients: Dict[Tuple[str, str], MilvusClient] = {}
        self._lock = threading.Lock()

    def get_client(self, uri: str, token: Optional[str] = None) -> MilvusClient:
        """Get a cached client for ``uri`` or create one.

        Args:
            uri: Milvus endpoint, e.g. ``http://localhost:19530``
            token: ``user:password`` or an API key

        Raises:
            ValueError: If ``uri`` is empty
        """
        if not uri:
            raise ValueError("Milvus URI must be non-empty")

        key = (uri, token or "")
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = MilvusClient(uri=uri, token=token or "")
                self._clients[key] = client
                logger.info("Connected to Milvus at %s", uri)
            return client

    def get_client_from_env(self, uri_var: str = DEFAULT_URI_ENV) -> MilvusClient:
        """Create or reuse a client configured from environment variables.

        Raises:
            KeyError: If ``uri_var`` is not set
            ValueError: If ``uri_var`` is empty
        """
        if uri_var not in os.environ:
            raise KeyError(f"Environment variable {uri_var} is not set")
        uri = os.environ[uri_var]
        if not uri:
            raise ValueError(f"Environment variable {uri_var} is empty")

        token = os.environ.get(TOKEN_ENV, "")
        if not token and os.environ.get(USER_ENV):
            token = f"{os.environ[USER_ENV]}:{os.environ.get(PASSWORD_ENV, '')}"
        return self.get_client(uri, token)

    def clear(self) -> None:
        """Close and forget every cached client."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            try:
                client.close()
            except Exception as e:  # noqa: BLE001
                logger.debug("Ignoring error while closing Milvus client: %s", e)


_connection_manager = MilvusConnectionManager()


def get_client(uri: str, token: Optional[str] = None) -> MilvusClient:
    return _connection_manager.get_client(uri, token)


def get_client_from_env(uri_var: str = DEFAULT_URI_ENV) -> MilvusClient:
    return _connection_manager.get_client_from_env(uri_var)

"""Partition bookkeeping for one collection."""

import logging
import threading
from typing import Any, Iterable, List, Set

from ..utils.backend_utils import call_backend
from ..utils.string_utils import partition_name

logger = logging.getLogger(__name__)


class PartitionRegistry:
    """Creates partitions on first use and remembers the ones seen.

    The lock serializes ``has_partition`` / ``create_partition`` pairs so two
    threads indexing into a new partition do not both try to create it.
    """

    def __init__(self, client: Any, collection_name: str):
        self.client = client
        self.collection_name = collection_name
        self._known: Set[str] = set()
        self._lock = threading.Lock()

    def ensure(self, value: Any) -> str:
        """Return the Milvus partition name for ``value``, creating it if needed."""
        name = partition_name(value)
        if name in self._known:
            return name

        with self._lock:
            if name in self._known:
                return name
            exists = call_backend(
                "has_partition",
                self.client.has_partition,
                collection_name=self.collection_name,
                partition_name=name,
            )
            if not exists:
                call_backend(
                    "create_partition",
                    self.client.create_partition,
                    collection_name=self.collection_name,
                    partition_name=name,
                )
                logger.info(
                    "Created partition %s in %s", name, self.collection_name
                )
            self._known.add(name)
        return name

    def existing(self, values: Iterable[Any]) -> List[str]:
        """Milvus names of the partitions among ``values`` that exist.

        Order follows ``values``; duplicates are collapsed.
        """
        names: List[str] = []
        for value in values:
            name = partition_name(value)
            if name in names:
                continue
            if name not in self._known:
                exists = call_backend(
                    "has_partition",
                    self.client.has_partition,
                    collection_name=self.collection_name,
                    partition_name=name,
                )
                if not exists:
                    logger.debug(
                        "Partition %s does not exist in %s, dropping it from the search",
                        name,
                        self.collection_name,
                    )
                    continue
                with self._lock:
                    self._known.add(name)
            names.append(name)
        return names

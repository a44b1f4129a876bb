"""Progress reporting for one ingestion run.

The indexer owns the reporter and writes to it after each committed batch;
callers keep a reference and poll ``get_progress``.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)


class ProgressState(BaseModel):
    """Snapshot of a progress reporter."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(..., ge=0)
    done: int = Field(..., ge=0)
    failed: int = Field(default=0, ge=0)
    error_message: str = Field(default="")


class ProgressBar(ABC):
    """Interface of an ingestion progress reporter."""

    @abstractmethod
    def add_n(self, n: int) -> None:
        """Record ``n`` more completed units."""

    @abstractmethod
    def report_error(self, err: BaseException) -> None:
        """Record a failure; no further progress is accepted afterwards."""

    @abstractmethod
    def get_progress(self) -> Tuple[int, int, str]:
        """Return ``(percent, remaining_seconds, error_message)``."""


class InMemoryProgressBar(ProgressBar):
    """Thread-safe progress reporter kept in process memory."""

    def __init__(self, total: int) -> None:
        if total < 0:
            raise InvalidArgumentError("total must not be negative")
        self._lock = threading.Lock()
        self._total = total
        self._done = 0
        self._failed = 0
        self._error_message = ""
        self._started_at = time.monotonic()

    def add_n(self, n: int) -> None:
        if n < 0:
            raise InvalidArgumentError("add_n requires a non-negative count")
        with self._lock:
            if self._error_message:
                logger.debug("Ignoring add_n(%d) after a reported error", n)
                return
            self._done = min(self._total, self._done + n)

    def report_error(self, err: BaseException) -> None:
        message = str(err) or err.__class__.__name__
        with self._lock:
            if self._error_message:
                return
            self._error_message = message
            self._failed = self._total - self._done

    def get_progress(self) -> Tuple[int, int, str]:
        with self._lock:
            return (
                self._percent(),
                self._remaining_seconds(),
                self._error_message,
            )

    def get_state(self) -> ProgressState:
        with self._lock:
            return ProgressState(
                total=self._total,
                done=self._done,
                failed=self._failed,
                error_message=self._error_message,
            )

    def reset(self, total: Optional[int] = None) -> None:
        """Start over, optionally with a new total."""
        if total is not None and total < 0:
            raise InvalidArgumentError("total must not be negative")
        with self._lock:
            if total is not None:
                self._total = total
            self._done = 0
            self._failed = 0
            self._error_message = ""
            self._started_at = time.monotonic()

    def _percent(self) -> int:
        if self._total == 0:
            return 100
        return min(100, (100 * self._done) // self._total)

    def _remaining_seconds(self) -> int:
        if self._done == 0 or self._error_message:
            return 0
        elapsed = time.monotonic() - self._started_at
        rate = self._done / elapsed if elapsed > 0 else 0.0
        if rate <= 0:
            return 0
        return int((self._total - self._done) / rate)

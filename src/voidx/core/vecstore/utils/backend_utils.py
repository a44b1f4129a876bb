"""Helpers shared by every component that talks to Milvus."""

import logging
import threading
from typing import Any, Callable, Optional, TypeVar

from ..core.exceptions import BackendError, OperationCancelledError, VecStoreException

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_backend(action: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a client call, surfacing client failures as ``BackendError``.

    Errors of the search-store taxonomy pass through untouched.
    """
    try:
        return fn(*args, **kwargs)
    except VecStoreException:
        raise
    except Exception as e:  # noqa: BLE001
        logger.error("Milvus %s failed: %s", action, e)
        raise BackendError(
            f"Milvus {action} failed: {e}", details={"action": action}
        ) from e


def check_cancelled(
    cancel_event: Optional[threading.Event], operation: str, **details: Any
) -> None:
    """Raise ``OperationCancelledError`` once the caller has set the event."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(f"{operation} cancelled", details=details)

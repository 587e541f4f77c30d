"""Tracks the running query task per connection or editor tab."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

LOG = logging.getLogger(__name__)


class CancelHandle(Protocol):
    def cancel(self) -> object: ...


class QueryCancellationRegistry:
    """At most one cancellable handle per identifier.

    Registering a second handle under the same identifier replaces the first;
    the replaced query keeps running but can no longer be cancelled here.
    """

    def __init__(self) -> None:
        self._handles: dict[str, CancelHandle] = {}
        self._lock = threading.Lock()

    def register(self, query_id: str, handle: CancelHandle) -> None:
        with self._lock:
            previous = self._handles.get(query_id)
            self._handles[query_id] = handle
        if previous is not None and previous is not handle:
            LOG.debug("Replacing running query handle for %s", query_id)

    def cancel(self, query_id: str) -> bool:
        """Cancel and forget the handle for ``query_id``; ``False`` if none is registered."""

        with self._lock:
            handle = self._handles.pop(query_id, None)
        if handle is None:
            return False
        handle.cancel()
        LOG.info("Cancelled query %s", query_id)
        return True

    def discard(self, query_id: str, handle: CancelHandle) -> None:
        """Forget ``handle`` unless it was already replaced by a newer one."""

        with self._lock:
            if self._handles.get(query_id) is handle:
                del self._handles[query_id]

    def is_running(self, query_id: str) -> bool:
        with self._lock:
            return query_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)


__all__ = ["CancelHandle", "QueryCancellationRegistry"]

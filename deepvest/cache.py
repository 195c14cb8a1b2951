"""Cache of rendered public views, keyed by page path.

Only anonymous, user-independent responses are stored here.  Mutations call
:func:`revalidate` with the page paths they affect; revalidation is best
effort and never fails the mutation.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any

log = logging.getLogger(__name__)

DEFAULT_TTL = 300.0


class ViewCache:
    def __init__(self, ttl: float = DEFAULT_TTL):
        self._ttl = ttl
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, path: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return None
            stored_at, value = entry
            if time.monotonic() - stored_at > self._ttl:
                del self._entries[path]
                return None
            return value

    def set(self, path: str, value: Any) -> None:
        with self._lock:
            self._entries[path] = (time.monotonic(), value)

    def invalidate(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, path: str) -> bool:
        return self.get(path) is not None


view_cache = ViewCache()


def revalidate(*paths: str) -> None:
    for path in paths:
        try:
            view_cache.invalidate(path)
        except Exception as exc:
            log.warning("Revalidation of %s failed: %s", path, exc)

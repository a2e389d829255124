"""
Key/value cache abstraction used for read-mostly slug data.
"""

from __future__ import annotations

import threading
from typing import Any, Optional, Protocol


class KeyValueCache(Protocol):
    """Process-local cache with explicit invalidation (no TTL)."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def invalidate(self, key: Optional[str] = None) -> None:
        ...


class InMemoryKeyValueCache:
    """Thread-safe dict cache. `invalidate()` with no key clears everything."""

    def __init__(self):
        self._items: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._items[key] = value

    def invalidate(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._items.clear()
            else:
                self._items.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

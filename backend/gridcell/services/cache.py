"""Process-wide lookup caches."""

import threading
from collections.abc import Callable
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class KeyedCache(Generic[K, V]):
    """Unbounded, lock-protected key/value cache.

    Entries never expire; callers invalidate explicitly.
    """

    def __init__(self) -> None:
        self._data: dict[K, V] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: K) -> None:
        with self._lock:
            self._data.pop(key, None)

    def evict(self, predicate: Callable[[K], bool]) -> int:
        """Remove every entry whose key matches. Returns the number removed."""
        with self._lock:
            doomed = [key for key in self._data if predicate(key)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

"""Thread-safe handle-to-value map used for one loading scope."""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock
from typing import Generic, TypeVar

V = TypeVar("V")

_MISSING = object()


class PerScopeCache(Generic[V]):
    """Values computed at most once per class handle.

    Reads of existing entries take no lock. A miss serializes only on a lock
    dedicated to that handle, so producers for different handles run in
    parallel while concurrent callers for the same handle wait for the first
    one to finish.
    """

    def __init__(self) -> None:
        self._values: dict[type, V] = {}
        self._lock = Lock()
        self._compute_locks: dict[type, Lock] = {}

    def get(self, handle: type) -> V | None:
        """Return the cached value for `handle`, or None when absent."""
        return self._values.get(handle)

    def get_or_compute(self, handle: type, producer: Callable[[type], V]) -> V:
        """Return the cached value for `handle`, computing it once on miss.

        Producer exceptions propagate and leave no entry behind.
        """
        value = self._values.get(handle, _MISSING)
        if value is not _MISSING:
            return value  # type: ignore[return-value]

        with self._lock:
            compute_lock = self._compute_locks.setdefault(handle, Lock())

        with compute_lock:
            value = self._values.get(handle, _MISSING)
            if value is not _MISSING:
                return value  # type: ignore[return-value]

            computed = producer(handle)
            with self._lock:
                self._values[handle] = computed
                self._compute_locks.pop(handle, None)
            return computed

    def clear(self) -> None:
        """Remove every cached value."""
        with self._lock:
            self._values.clear()

    def __contains__(self, handle: object) -> bool:
        return handle in self._values

    def __len__(self) -> int:
        return len(self._values)

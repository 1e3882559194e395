"""Thread-safe per-class value cache that does not keep loading scopes alive.

A plain dict keyed by classes keeps every class, and through it the scope
that loaded the class, alive for as long as the cache lives. A fully weak map
avoids that leak but lets cached values disappear while their class is still
in use. `ScopeCache` stores the values of each foreign scope in a separate map
that is registered only weakly here and anchored strongly inside the scope
itself, so the values live exactly as long as the scope does.

Classes from the cache's own scope chain (including everything imported
normally) cannot be unloaded before the cache, and use a plain shared map.
"""

from __future__ import annotations

import weakref
from collections.abc import Callable
from typing import Generic, TypeVar

from scopecache.config import CacheSettings
from scopecache.registry.anchor import AnchorInjector
from scopecache.registry.scope_registry import ScopeRegistry
from scopecache.scope.model import ancestry, scope_of

V = TypeVar("V")


class ScopeCache(Generic[V]):
    """Cache one producer-computed value per class, bounded by the class's scope lifetime."""

    def __init__(self, producer: Callable[[type], V], settings: CacheSettings | None = None) -> None:
        """Create a cache that calls `producer(cls)` on a miss."""
        if producer is None:
            raise ValueError("producer cannot be None")
        if not callable(producer):
            raise TypeError("producer must be callable")

        self._producer = producer
        self.settings = settings or CacheSettings()
        self._registry: ScopeRegistry[V] = ScopeRegistry(
            ancestry(scope_of(type(self))),
            AnchorInjector(self.settings),
        )
        # Best effort only: finalizers may run late or, at interpreter exit, not at all.
        # The finalizer must reference the registry, never `self`.
        self._finalizer = weakref.finalize(self, self._registry.clear)

    def get(self, handle: type) -> V:
        """Return the cached value for `handle`, producing it on first request."""
        if handle is None:
            raise ValueError("handle cannot be None")
        if not isinstance(handle, type):
            raise TypeError(f"handle must be a class, got {type(handle).__name__}")

        cache = self._registry.resolve(scope_of(handle))
        return cache.get_or_compute(handle, self._producer)

    def clear(self) -> None:
        """Remove all cached values.

        Anchors already injected into foreign scopes are kept and stay empty
        until their scope is collected.
        """
        self._registry.clear()

    def scope_count(self) -> int:
        """Number of live foreign scopes this cache has anchored values in."""
        return self._registry.scope_count()

"""Per-scope cache lookup with weakly registered foreign scopes."""

from __future__ import annotations

import logging
import weakref
from collections.abc import Iterable
from threading import Lock
from typing import Generic, TypeVar

from scopecache.errors import ScopeInvariantError
from scopecache.registry.anchor import AnchorInjector
from scopecache.registry.per_scope import PerScopeCache
from scopecache.scope.model import LoadingScope

logger = logging.getLogger(__name__)

V = TypeVar("V")

_Snapshot = weakref.WeakKeyDictionary  # LoadingScope -> weakref.ref[PerScopeCache]


class ScopeRegistry(Generic[V]):
    """Resolve the cache that holds values for classes of one loading scope.

    Scopes in `own_scopes` outlive the registry's owner, so they share one
    strongly held cache. Every other scope gets its own cache, registered
    here only through weak references and kept alive by an anchor injected
    into the scope itself.

    The registry snapshot is never mutated after publication. Writers build a
    new snapshot under `_update_lock` and swap the attribute, so readers can
    look scopes up without locking.
    """

    def __init__(self, own_scopes: Iterable[LoadingScope], injector: AnchorInjector) -> None:
        self._own_scopes = frozenset(own_scopes)
        self._own_values: PerScopeCache[V] = PerScopeCache()
        self._injector = injector
        self._snapshot: _Snapshot = weakref.WeakKeyDictionary()
        self._update_lock = Lock()

    @property
    def own_scopes(self) -> frozenset[LoadingScope]:
        return self._own_scopes

    def resolve(self, scope: LoadingScope) -> PerScopeCache[V]:
        """Return the cache for `scope`, creating and anchoring it on first use."""
        if scope in self._own_scopes:
            return self._own_values

        reference = self._snapshot.get(scope)
        if reference is not None:
            return self._live(scope, reference)

        with self._update_lock:
            current = self._snapshot
            reference = current.get(scope)
            if reference is not None:
                # Registered while we waited for the lock
                return self._live(scope, reference)

            cache: PerScopeCache[V] = PerScopeCache()
            # Raises before publication, so a failed injection leaves no entry
            self._injector.attach(scope, cache)

            updated: _Snapshot = weakref.WeakKeyDictionary(current)
            updated[scope] = weakref.ref(cache)
            self._snapshot = updated

        logger.debug("Registered cache for scope %r (%d foreign scopes)", scope, len(updated))
        return cache

    def _live(self, scope: LoadingScope, reference: weakref.ref) -> PerScopeCache[V]:
        cache = reference()
        if cache is None:
            # The caller holds `scope`, so its anchor should still hold the cache.
            logger.error("Cache for live scope %r was collected; its anchor is gone", scope)
            raise ScopeInvariantError(
                f"cache for scope {scope!r} was collected even though the scope is still alive"
            )
        return cache

    def clear(self) -> None:
        """Empty the own-scope cache and every foreign cache that is still alive.

        Anchors stay in their scopes. Each touched scope keeps an empty cache
        until the scope itself is collected.
        """
        self._own_values.clear()
        cleared = 0
        for reference in list(self._snapshot.values()):
            cache = reference()
            if cache is not None:
                cache.clear()
                cleared += 1
        logger.debug("Cleared own cache and %d foreign scope caches", cleared)

    def scope_count(self) -> int:
        """Number of foreign scopes whose caches are currently alive."""
        return sum(1 for reference in list(self._snapshot.values()) if reference() is not None)

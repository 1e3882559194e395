"""Tests for per-scope cache resolution and copy-on-write registration."""

from __future__ import annotations

import gc
import threading
import weakref
from concurrent.futures import ThreadPoolExecutor

import pytest

from scopecache.diagnostics import is_collected
from scopecache.errors import AnchorInjectionError, ScopeInvariantError
from scopecache.registry.anchor import ANCHOR_CLASS_NAME, AnchorInjector, anchored_value
from scopecache.registry.scope_registry import ScopeRegistry
from scopecache.scope.loader import ModuleScope
from scopecache.scope.model import ROOT_SCOPE


def _registry() -> ScopeRegistry[object]:
    return ScopeRegistry([ROOT_SCOPE], AnchorInjector())


def _anchor_modules(scope: ModuleScope) -> list[str]:
    return [name for name in scope.modules() if name.startswith("_scopecache_anchor")]


def test_own_scopes_share_one_cache() -> None:
    """Every own scope resolves to the same strongly held cache without injecting anything."""
    parent = ModuleScope("parent")
    registry: ScopeRegistry[object] = ScopeRegistry([parent, ROOT_SCOPE], AnchorInjector())

    assert registry.resolve(ROOT_SCOPE) is registry.resolve(parent)
    assert _anchor_modules(parent) == []
    assert registry.scope_count() == 0


def test_foreign_scope_gets_anchored_cache() -> None:
    """A foreign scope gets its own cache, anchored once inside the scope."""
    registry = _registry()
    scope = ModuleScope("plugin")

    cache = registry.resolve(scope)

    assert registry.resolve(scope) is cache
    assert cache is not registry.resolve(ROOT_SCOPE)
    anchors = _anchor_modules(scope)
    assert len(anchors) == 1
    assert anchored_value(scope.modules()[anchors[0]]) is cache
    assert registry.scope_count() == 1


def test_separate_scopes_get_separate_caches() -> None:
    """Each foreign scope has its own cache."""
    registry = _registry()
    first = ModuleScope("first")
    second = ModuleScope("second")

    assert registry.resolve(first) is not registry.resolve(second)
    assert registry.scope_count() == 2


def test_concurrent_first_lookups_inject_once() -> None:
    """Racing first lookups for a new scope agree on one cache and one anchor."""
    registry = _registry()
    scope = ModuleScope("plugin")
    barrier = threading.Barrier(8, timeout=5)

    def resolve() -> object:
        barrier.wait()
        return registry.resolve(scope)

    with ThreadPoolExecutor(max_workers=8) as pool:
        caches = list(pool.map(lambda _: resolve(), range(8)))

    assert all(cache is caches[0] for cache in caches)
    assert len(_anchor_modules(scope)) == 1


def test_lost_anchor_is_reported_as_invariant_violation() -> None:
    """A collected cache for a scope that is still alive is never silently replaced."""
    registry = _registry()
    scope = ModuleScope("plugin")
    registry.resolve(scope)
    (anchor_name,) = _anchor_modules(scope)
    setattr(getattr(scope.modules()[anchor_name], ANCHOR_CLASS_NAME), "value", None)
    gc.collect()

    with pytest.raises(ScopeInvariantError, match="still alive"):
        registry.resolve(scope)


def test_failed_injection_publishes_nothing() -> None:
    """A scope refusing the anchor leaves the registry unchanged and can be retried."""
    registry = _registry()
    scope = ModuleScope("plugin", sealed=True)

    with pytest.raises(AnchorInjectionError):
        registry.resolve(scope)
    assert registry.scope_count() == 0

    scope.sealed = False
    cache = registry.resolve(scope)

    assert registry.resolve(scope) is cache
    assert registry.scope_count() == 1


def test_registry_does_not_keep_foreign_scope_alive() -> None:
    """Registering a scope holds it only weakly."""
    registry = _registry()
    scope = ModuleScope("plugin")
    cache_ref = weakref.ref(registry.resolve(scope))
    scope_ref = weakref.ref(scope)

    del scope

    assert is_collected(scope_ref)
    assert is_collected(cache_ref)
    assert registry.scope_count() == 0


def test_clear_empties_live_caches_and_skips_dead_ones() -> None:
    """Clearing empties own and live foreign caches; collected scopes are skipped."""
    registry = _registry()
    kept = ModuleScope("kept")
    dropped = ModuleScope("dropped")
    registry.resolve(ROOT_SCOPE).get_or_compute(int, lambda handle: "own")
    registry.resolve(kept).get_or_compute(int, lambda handle: "kept")
    registry.resolve(dropped).get_or_compute(int, lambda handle: "dropped")
    dropped_ref = weakref.ref(dropped)
    del dropped
    assert is_collected(dropped_ref)

    registry.clear()

    assert len(registry.resolve(ROOT_SCOPE)) == 0
    kept_cache = registry.resolve(kept)
    assert len(kept_cache) == 0
    assert len(_anchor_modules(kept)) == 1


def test_registration_publishes_new_snapshot() -> None:
    """A new scope is published in a fresh snapshot; the previous one is never modified."""
    registry = _registry()
    first = ModuleScope("first")
    registry.resolve(first)
    before = registry._snapshot
    before_scopes = list(before.keys())

    second = ModuleScope("second")
    registry.resolve(second)

    assert registry._snapshot is not before
    assert list(before.keys()) == before_scopes
    assert second not in before
    assert first in registry._snapshot and second in registry._snapshot


def test_registered_scope_resolves_without_update_lock() -> None:
    """Lookups of an already registered scope do not wait for the update lock."""
    registry = _registry()
    scope = ModuleScope("plugin")
    cache = registry.resolve(scope)

    # lock released before pool shutdown so a blocked lookup fails instead of hanging
    with ThreadPoolExecutor(max_workers=1) as pool, registry._update_lock:
        assert pool.submit(registry.resolve, scope).result(timeout=2) is cache

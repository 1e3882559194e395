"""Loading-scope contracts and handle-to-scope resolution."""

from __future__ import annotations

from types import ModuleType
from typing import Protocol

from scopecache.errors import ScopeLoadError

SCOPE_ATTRIBUTE = "__scope__"


class LoadingScope(Protocol):
    """A unit of code loading whose lifetime bounds the classes it defines.

    Implementations must hash by identity and support weak references.
    """

    name: str
    parent: LoadingScope | None

    def load_source(self, module_name: str, source: str) -> ModuleType:
        """Execute `source` as a new module retained by this scope."""


class _RootScope:
    """Scope of classes imported through the interpreter's regular import system."""

    __slots__ = ("__weakref__",)

    name = "<root>"
    parent = None

    def load_source(self, module_name: str, source: str) -> ModuleType:
        raise ScopeLoadError("the root scope does not accept injected modules")

    def __repr__(self) -> str:
        return "ROOT_SCOPE"


ROOT_SCOPE: LoadingScope = _RootScope()


def scope_of(handle: type) -> LoadingScope:
    """Return the nearest scope `handle` depends on, or the root scope when none does.

    Unstamped classes built on a scoped base (host-side subclasses, classes
    created with `type()` inside a plugin) reference that base's scope, so
    they resolve to it and never land in a cache that outlives the scope.
    """
    for klass in handle.__mro__:
        # vars() per class: the nearest stamp wins over one inherited further up
        scope = vars(klass).get(SCOPE_ATTRIBUTE)
        if scope is not None:
            return scope
    return ROOT_SCOPE


def ancestry(scope: LoadingScope) -> tuple[LoadingScope, ...]:
    """Return `scope` followed by its parents, always ending with the root scope."""
    chain: list[LoadingScope] = []
    current: LoadingScope | None = scope
    while current is not None and current is not ROOT_SCOPE:
        if any(seen is current for seen in chain):
            raise ValueError(f"scope ancestry contains a cycle at {current!r}")
        chain.append(current)
        current = current.parent
    chain.append(ROOT_SCOPE)
    return tuple(chain)

"""Exception types raised by the scope-bound cache."""

from __future__ import annotations


class ScopeCacheError(RuntimeError):
    """Base class for failures inside the cache machinery."""


class ScopeLoadError(ScopeCacheError):
    """A loading scope refused or failed to load a module."""


class AnchorInjectionError(ScopeCacheError):
    """A value could not be anchored inside a loading scope."""


class ScopeInvariantError(ScopeCacheError):
    """A per-scope cache vanished while its scope was still reachable."""

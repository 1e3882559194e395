"""In-process loading scope that owns the modules and classes it loads.

A `ModuleScope` plays the role a class loader plays on other runtimes: it
compiles source into private module objects, keeps them in its own module
table instead of `sys.modules`, and stamps every class those modules define
with a strong reference back to the scope. Dropping every reference to the
scope, its modules and the instances of its classes makes the whole graph
collectible.
"""

from __future__ import annotations

import builtins
import logging
from collections.abc import Mapping
from threading import Lock
from types import MappingProxyType, ModuleType
from typing import Any

from scopecache.errors import ScopeLoadError
from scopecache.scope.model import SCOPE_ATTRIBUTE, LoadingScope

logger = logging.getLogger(__name__)


class ModuleScope:
    """A named, optionally nested scope for dynamically loaded modules."""

    def __init__(
        self,
        name: str,
        parent: LoadingScope | None = None,
        *,
        sealed: bool = False,
    ) -> None:
        if not name:
            raise ValueError("name must not be empty")
        self.name = name
        self.parent = parent
        self.sealed = sealed
        self._lock = Lock()
        self._modules: dict[str, ModuleType] = {}
        self._loading: set[str] = set()
        self._types: list[type] = []

    def load_source(self, module_name: str, source: str) -> ModuleType:
        """Compile `source` into a new module owned by this scope and return it."""
        if not module_name:
            raise ValueError("module_name must not be empty")
        if self.sealed:
            raise ScopeLoadError(f"scope {self.name!r} is sealed and refuses new modules")

        with self._lock:
            if module_name in self._modules or module_name in self._loading:
                raise ScopeLoadError(f"module {module_name!r} already loaded in scope {self.name!r}")
            self._loading.add(module_name)

        # Executed outside the lock so module bodies may load further modules.
        try:
            module = ModuleType(module_name)
            module.__dict__["__builtins__"] = self._scoped_builtins()
            code = compile(source, f"<{self.name}:{module_name}>", "exec")
            exec(code, module.__dict__)
        except Exception as exc:
            raise ScopeLoadError(f"failed to load {module_name!r} into scope {self.name!r}") from exc
        else:
            with self._lock:
                self._modules[module_name] = module
        finally:
            with self._lock:
                self._loading.discard(module_name)

        logger.debug("Loaded module %s into scope %s", module_name, self.name)
        return module

    def define_type(
        self,
        name: str,
        bases: tuple[type, ...] = (),
        namespace: Mapping[str, Any] | None = None,
    ) -> type:
        """Create a class owned by this scope without going through source."""
        if self.sealed:
            raise ScopeLoadError(f"scope {self.name!r} is sealed and refuses new types")
        body = dict(namespace or {})
        body.setdefault("__module__", f"<{self.name}>")
        body[SCOPE_ATTRIBUTE] = self
        cls = type(name, bases or (object,), body)
        with self._lock:
            self._types.append(cls)
        return cls

    def get_module(self, module_name: str) -> ModuleType | None:
        """Return a module previously loaded into this scope, or None."""
        with self._lock:
            return self._modules.get(module_name)

    def modules(self) -> Mapping[str, ModuleType]:
        """Return a read-only snapshot of the modules owned by this scope."""
        with self._lock:
            return MappingProxyType(dict(self._modules))

    def _scoped_builtins(self) -> dict[str, Any]:
        """Builtins whose `__build_class__` stamps new classes with this scope."""
        scope = self
        build_class = builtins.__build_class__

        def __build_class__(func: Any, name: str, *bases: Any, **kwargs: Any) -> Any:
            cls = build_class(func, name, *bases, **kwargs)
            if isinstance(cls, type):
                type.__setattr__(cls, SCOPE_ATTRIBUTE, scope)
            return cls

        scoped = dict(vars(builtins))
        scoped["__build_class__"] = __build_class__
        return scoped

    def __repr__(self) -> str:
        parent = getattr(self.parent, "name", None)
        return f"ModuleScope(name={self.name!r}, parent={parent!r}, modules={len(self._modules)})"

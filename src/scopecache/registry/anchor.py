"""Anchor values inside a loading scope's own object graph.

The injector synthesizes a tiny module holding one class with one mutable
class attribute, loads it into the target scope, and stores the value in that
attribute. The scope's module table then keeps the value alive for exactly as
long as the scope itself is alive. The generated source contains only
literals, so nothing inside the scope points back at the injector or at the
cache that owns it.
"""

from __future__ import annotations

import itertools
import logging
from types import ModuleType
from typing import Any

from scopecache.config import CacheSettings
from scopecache.errors import AnchorInjectionError
from scopecache.scope.model import SCOPE_ATTRIBUTE, LoadingScope

logger = logging.getLogger(__name__)

ANCHOR_CLASS_NAME = "Anchor"

# itertools.count is atomic under the GIL
_anchor_ids = itertools.count(1)


def _anchor_source(slot: str) -> str:
    return f"class {ANCHOR_CLASS_NAME}:\n    {slot} = None\n"


class AnchorInjector:
    """Attach values to loading scopes through synthesized anchor modules."""

    def __init__(self, settings: CacheSettings | None = None) -> None:
        resolved = settings or CacheSettings()
        self.prefix = resolved.anchor_prefix
        self.slot = resolved.anchor_slot

    def attach(self, scope: LoadingScope, value: Any) -> ModuleType:
        """Make `value` strongly reachable from inside `scope` and return the anchor module.

        A failure after the scope accepted the module (wrong scope stamp,
        unwritable slot) leaves that anchor module behind with an empty slot,
        like the empty caches `clear()` leaves. Nothing refers to it.
        """
        load_source = getattr(scope, "load_source", None)
        if not callable(load_source):
            raise AnchorInjectionError(f"scope {scope!r} does not support loading modules")

        module_name = f"{self.prefix}_{next(_anchor_ids)}"
        try:
            module = load_source(module_name, _anchor_source(self.slot))
        except Exception as exc:
            raise AnchorInjectionError(f"scope {scope!r} refused anchor module {module_name!r}") from exc

        anchor = getattr(module, ANCHOR_CLASS_NAME, None)
        if not isinstance(anchor, type):
            raise AnchorInjectionError(f"anchor module {module_name!r} did not define {ANCHOR_CLASS_NAME}")
        if vars(anchor).get(SCOPE_ATTRIBUTE) is not scope:
            raise AnchorInjectionError(f"anchor module {module_name!r} was not loaded into scope {scope!r}")

        try:
            setattr(anchor, self.slot, value)
        except (AttributeError, TypeError) as exc:
            raise AnchorInjectionError(f"cannot write anchor slot {self.slot!r} in {module_name!r}") from exc

        logger.debug("Anchored %s in scope %r via %s", type(value).__name__, scope, module_name)
        return module


def anchored_value(module: ModuleType, slot: str | None = None) -> Any:
    """Read the value stored in an anchor module's slot (default slot from `CacheSettings`)."""
    return getattr(getattr(module, ANCHOR_CLASS_NAME), slot or CacheSettings().anchor_slot)

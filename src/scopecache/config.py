"""Runtime settings for scope-bound caches."""

from __future__ import annotations

import keyword
import os

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CacheSettings(BaseModel):
    """Tunables shared by the anchor injector and collection probes."""

    model_config = ConfigDict(frozen=True)

    anchor_prefix: str = "_scopecache_anchor"
    anchor_slot: str = "value"
    collect_attempts: int = Field(default=10, gt=0)
    collect_interval_s: float = Field(default=0.01, ge=0.0)

    @field_validator("anchor_prefix", "anchor_slot")
    @classmethod
    def _validate_identifier(cls, value: str) -> str:
        """Anchor names end up in generated source, so they must be plain identifiers."""
        if not value.isidentifier() or keyword.iskeyword(value):
            raise ValueError(f"{value!r} is not a valid Python identifier")
        if value.startswith("__") and value.endswith("__"):
            raise ValueError(f"{value!r} must not be a dunder name")
        return value

    @classmethod
    def from_env(cls) -> "CacheSettings":
        """Build settings from `SCOPECACHE_*` environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            anchor_prefix=os.getenv("SCOPECACHE_ANCHOR_PREFIX", defaults.anchor_prefix).strip(),
            anchor_slot=os.getenv("SCOPECACHE_ANCHOR_SLOT", defaults.anchor_slot).strip(),
            collect_attempts=int(os.getenv("SCOPECACHE_COLLECT_ATTEMPTS", str(defaults.collect_attempts))),
            collect_interval_s=float(
                os.getenv("SCOPECACHE_COLLECT_INTERVAL_S", str(defaults.collect_interval_s))
            ),
        )

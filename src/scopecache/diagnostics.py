"""Helpers for checking that scopes and cached values are actually released."""

from __future__ import annotations

import gc
import time
import weakref

from scopecache.config import CacheSettings


def is_collected(
    ref: weakref.ref,
    attempts: int | None = None,
    interval_s: float | None = None,
    settings: CacheSettings | None = None,
) -> bool:
    """Force collection cycles until `ref` resolves to None, up to `attempts` times."""
    resolved = settings or CacheSettings()
    attempts = resolved.collect_attempts if attempts is None else attempts
    interval_s = resolved.collect_interval_s if interval_s is None else interval_s
    if attempts <= 0:
        raise ValueError("attempts must be positive")

    for _ in range(attempts):
        gc.collect()
        if ref() is None:
            return True
        time.sleep(interval_s)
    return False

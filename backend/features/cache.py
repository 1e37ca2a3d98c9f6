"""
Cache invalidation hook.

Features tell the application which cached REST resources became stale.
Keys are tuples mirroring the REST path, e.g. ("/api/v1/orders", "o1").
"""

from __future__ import annotations

from typing import Callable

CacheKey = tuple[str, ...]
Invalidate = Callable[[CacheKey], None]


def noop_invalidate(_key: CacheKey) -> None:
    return None

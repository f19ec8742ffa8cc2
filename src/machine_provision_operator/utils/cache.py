"""TTL cache for read-only Kubernetes lookups."""

from __future__ import annotations

import os
import threading
import time
from typing import Any, Callable

# Cache with TTL support, shared by all reconcile workers
_cache: dict[str, tuple[Any, float]] = {}
_cache_lock = threading.Lock()
_cache_ttl: float = float(os.getenv("K8S_CACHE_TTL_SECONDS", "30.0"))


def get_cached_object(key: str) -> Any | None:
    """Get an object from cache if it hasn't expired.

    Args:
        key: Cache key (typically "kind:namespace:name")

    Returns:
        Cached object or None if not found or expired
    """
    with _cache_lock:
        entry = _cache.get(key)
        if entry is None:
            return None

        obj, timestamp = entry
        if time.time() - timestamp > _cache_ttl:
            del _cache[key]
            return None

        return obj


def set_cached_object(key: str, obj: Any) -> None:
    """Store an object in cache with current timestamp."""
    with _cache_lock:
        _cache[key] = (obj, time.time())


def get_or_load(key: str, loader: Callable[[], Any]) -> tuple[Any, bool]:
    """Return a cached object, loading and caching it on a miss.

    Args:
        key: Cache key
        loader: Called without arguments on a cache miss; exceptions propagate
            and nothing is cached

    Returns:
        Tuple of (object, cache_hit)
    """
    cached = get_cached_object(key)
    if cached is not None:
        return cached, True

    obj = loader()
    set_cached_object(key, obj)
    return obj, False


def invalidate_cache(pattern: str | None = None) -> None:
    """Invalidate cache entries.

    Args:
        pattern: Optional substring to match keys (if None, clears all)
    """
    with _cache_lock:
        if pattern is None:
            _cache.clear()
        else:
            for key in [key for key in _cache if pattern in key]:
                del _cache[key]


def make_cache_key(kind: str, namespace: str, name: str) -> str:
    """Create a cache key for a Kubernetes resource."""
    return f"{kind}:{namespace}:{name}"

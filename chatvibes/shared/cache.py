"""In-process TTL cache and keyed locks.

Uses cachetools.TTLCache. Each process owns its own instances; nothing is
shared across workers. Only public, non-credential data may be cached here:
channel records are always read from the database because they carry the
``needs_reauth`` flag.
"""

import asyncio
import functools
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not in cache" from a cached None
_MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class KeyedLock:
    """One ``asyncio.Lock`` per key, pruned once no holder or waiter remains."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


class AsyncTTLCache:
    """Async-aware TTL cache with per-key fill locks."""

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._fill_locks = KeyedLock()

    def get(self, key: str) -> Any:
        """Return the cached value or ``_MISSING``."""
        return self._cache.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    @property
    def size(self) -> int:
        return len(self._cache)


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    cache_none: bool = False,
):
    """Cache the result of an async function.

    Concurrent misses on the same key are collapsed: the first caller fills
    the cache while the others wait on the key's lock and then read the
    filled value. ``None`` results are not cached unless *cache_none* is set,
    so a failed lookup is retried on the next call.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            cache_key = key_func(*args, **kwargs)

            result = cache.get(cache_key)
            if result is not _MISSING:
                return result

            async with cache._fill_locks.acquire(cache_key):
                result = cache.get(cache_key)
                if result is not _MISSING:
                    return result

                result = await func(*args, **kwargs)
                if result is not None or cache_none:
                    cache.set(cache_key, result)
                else:
                    logger.debug("Not caching empty result for %s", cache_key)
                return result

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator

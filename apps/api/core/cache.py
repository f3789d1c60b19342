"""
In-process TTL cache

Small key/value cache for admin dashboard reads. Each entry carries an
absolute expiry computed from an injected clock, so tests can move time
without sleeping. The cache is bounded: inserting past capacity purges
expired entries first, then evicts the oldest insertions.

There is no module-level instance. The app keeps one on ``app.state`` and
routes reach it through ``get_cache``.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from fastapi import Request

logger = logging.getLogger(__name__)


class TTLCache:
    """Bounded string-keyed cache with expiry-on-read."""

    def __init__(
        self,
        max_entries: int = 256,
        default_ttl_s: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl_s = default_ttl_s
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[Any, float]]" = OrderedDict()
        # Webhook reconciliation invalidates from a worker thread.
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        # Re-setting a key counts as a fresh insertion for eviction order.
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (value, self._clock() + ttl)
            if len(self._entries) > self.max_entries:
                self._evict()

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Drop entries whose key contains ``pattern`` (all entries if None).

        Returns the number of entries removed.
        """
        with self._lock:
            if pattern is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed

            doomed = [k for k in self._entries if pattern in k]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries matching {pattern!r}")
        return len(doomed)

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl_s: Optional[float] = None) -> Any:
        cached_value = self.get(key)
        if cached_value is not None:
            logger.debug(f"Cache hit: {key}")
            return cached_value
        logger.debug(f"Cache miss: {key}")
        value = factory()
        self.set(key, value, ttl_s)
        return value

    def _evict(self) -> None:
        now = self._clock()
        for k in [k for k, (_, exp) in self._entries.items() if now > exp]:
            del self._entries[k]
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


def get_cache(request: Request) -> TTLCache:
    """FastAPI dependency returning the app-wide cache instance."""
    return request.app.state.cache

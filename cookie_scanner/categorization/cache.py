"""In-process TTL cache for cookie categorization results.

Keyed by cookie name.  One instance is built at start-up and shared
by every concurrent scan through the categorization client.  Entries
are checked against ``expires_at`` on lookup and purged lazily when
stale; there is no background sweeper.

The cache is purely look-aside: disabling it changes upstream load,
never which cookies a scan reports.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable

from cookie_scanner.models import categorization
from cookie_scanner.utils import logger

log = logger.create_logger("CategoryCache")


class CategorizationCache:
    """Thread-safe name -> :class:`CookieCategory` map with per-entry TTL."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._clock = clock
        self._entries: dict[str, categorization.CategorizationCacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> categorization.CookieCategory | None:
        """Return the cached value for *name*, or ``None`` if absent or expired."""
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[name]
                return None
            return entry.value

    def lookup(self, names: Iterable[str]) -> tuple[dict[str, categorization.CookieCategory], set[str]]:
        """Split *names* into cache hits and the uncached remainder."""
        hits: dict[str, categorization.CookieCategory] = {}
        misses: set[str] = set()
        for name in names:
            value = self.get(name)
            if value is None:
                misses.add(name)
            else:
                hits[name] = value
        if hits:
            log.debug("Category cache hits", {"hits": len(hits), "misses": len(misses)})
        return hits, misses

    def put(self, name: str, value: categorization.CookieCategory) -> None:
        if not self.enabled:
            return
        entry = categorization.CategorizationCacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
        with self._lock:
            self._entries[name] = entry

    def put_many(self, values: dict[str, categorization.CookieCategory]) -> None:
        for name, value in values.items():
            self.put(name, value)

    def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        log.info("Category cache cleared", {"entriesRemoved": count})
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

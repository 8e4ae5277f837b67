"""
In-memory key/value cache with per-entry expiry and hit/miss statistics.

Entries expire lazily: an expired entry is removed when a ``get`` finds it,
or in bulk by ``sweep``.  ``CacheSweeper`` runs ``sweep`` periodically on a
daemon thread.  Nothing is persisted.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .constants import DEFAULT_CACHE_TTL_SECONDS, DEFAULT_SWEEP_INTERVAL_SECONDS
from .observability.metrics import round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


class ExpiringCache:
    """Thread-safe TTL cache.

    Usage::

        cache = ExpiringCache()
        cache.put("user:42", user, ttl_seconds=60)
        cache.get("user:42")  # -> user, or None once expired

    Args:
        default_ttl_seconds: TTL used by ``put`` when none is given.
        clock: Monotonic time source in seconds; injectable for tests.
    """

    def __init__(
        self,
        default_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._entries_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _expired(entry: CacheEntry, now: float) -> bool:
        return now >= entry.expires_at

    def put(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store *value* under *key*, replacing any previous entry.

        A ``ttl_seconds`` of zero or less stores an entry that is already
        expired: no later ``get`` returns it.
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl)
        with self._entries_lock:
            self._entries[key] = entry
        logger.debug("Cache put: %s (ttl=%ss)", key, ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for *key*, or ``None`` (counted as a miss)."""
        with self._entries_lock:
            entry = self._entries.get(key)
            expired = entry is not None and self._expired(entry, self._clock())
            if expired:
                del self._entries[key]

        if entry is None or expired:
            with self._stats_lock:
                self._misses += 1
            logger.debug("Cache %s: %s", "expired" if expired else "miss", key)
            return None

        with self._stats_lock:
            self._hits += 1
        return entry.value

    def evict(self, key: str) -> None:
        """Remove *key* if present."""
        with self._entries_lock:
            self._entries.pop(key, None)
        logger.debug("Cache evict: %s", key)

    def clear(self) -> None:
        """Remove every entry and reset the hit/miss counters."""
        with self._entries_lock:
            size = len(self._entries)
            self._entries = {}
        with self._stats_lock:
            self._hits = 0
            self._misses = 0
        logger.info("Cache cleared: %d entries removed", size)

    def sweep(self) -> int:
        """Remove every expired entry and return how many were removed.

        Does not touch the hit/miss counters.
        """
        now = self._clock()
        with self._entries_lock:
            expired_keys = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in expired_keys:
                del self._entries[key]
            remaining = len(self._entries)

        if expired_keys:
            logger.info(
                "Cache sweep: %d expired entries removed, %d remaining",
                len(expired_keys),
                remaining,
            )
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Return ``entries``, ``hits``, ``misses``, ``hit_rate`` (%) and ``total_requests``."""
        with self._stats_lock:
            hits = self._hits
            misses = self._misses
        total = hits + misses
        return {
            "entries": len(self._entries),
            "hits": hits,
            "misses": misses,
            "hit_rate": round_half_up(hits / total * 100) if total else 0.0,
            "total_requests": total,
        }


# ── Background sweeper ───────────────────────────────────────────


class CacheSweeper:
    """Daemon thread that calls ``cache.sweep()`` every *interval_seconds*."""

    def __init__(
        self,
        cache: ExpiringCache,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="cache-sweeper")
        self._thread.start()
        logger.info("Cache sweeper started (interval: %ss)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.cache.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

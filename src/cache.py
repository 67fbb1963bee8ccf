"""In-process TTL cache for analytics responses.

Entries expire a fixed time after insertion regardless of access. Expired
entries are dropped lazily on :meth:`ResponseCache.get` and proactively by a
periodic :meth:`ResponseCache.sweep` driven by :class:`src.scheduler.Scheduler`.
Record writers call :meth:`ResponseCache.invalidate` with the stream they
appended to, so aggregates are recomputed on the next read instead of
waiting out the TTL.

The cache is per process: several server instances each keep their own
copy, and staleness between them is bounded by the TTL.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from src.analytics import config

__all__ = [
    "CACHE_MISS",
    "RESPONSES_STREAM",
    "EMAILS_STREAM",
    "ResponseCache",
    "make_cache_key",
]

logger = logging.getLogger(__name__)

# Stream keys embedded in cache keys and passed to invalidate() by writers
RESPONSES_STREAM = "responses"
EMAILS_STREAM = "emails"


class _Miss:
    """Sentinel type returned by :meth:`ResponseCache.get` on a miss."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "CACHE_MISS"

    def __bool__(self) -> bool:
        return False


CACHE_MISS: Any = _Miss()


def make_cache_key(
    path: str,
    params: Optional[Mapping[str, Any]] = None,
    streams: Iterable[str] = (),
) -> str:
    """Return a deterministic cache key for an endpoint invocation.

    Empty parameters are dropped and the rest are serialised with sorted
    keys, so ``?a=1&b=`` and ``?b=&a=1`` share a key. *streams* lists the
    record streams the response is built from; they are embedded in the key
    so ``invalidate("responses")`` also hits aggregates derived from them.
    """
    normalized = {
        str(name): value
        for name, value in (params or {}).items()
        if value is not None and value != ""
    }
    stream_part = ",".join(sorted(set(streams)))
    query_part = json.dumps(normalized, sort_keys=True, default=str)
    return f"{path}|{stream_part}|{query_part}"


@dataclass(slots=True)
class _Entry:
    value: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class ResponseCache:
    """A thread-safe TTL cache keyed by request shape."""

    def __init__(
        self,
        default_ttl: float = config.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an empty cache.

        Args:
            default_ttl: Lifetime in seconds for entries stored without an
                explicit ``ttl``.
            clock: Monotonic time source; tests inject a fake one.
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._sweep_task: Optional[int] = None
        self._scheduler = None
        self.hits = 0
        self.misses = 0

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------
    def get(self, key: str) -> Any:
        """Return the cached value for *key*, or :data:`CACHE_MISS`."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expired(self._clock()):
                del self._entries[key]
                entry = None
            if entry is None:
                self.misses += 1
                logger.debug("Cache miss for %s", key)
                return CACHE_MISS
            self.hits += 1
            logger.debug("Cache hit for %s", key)
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store *value* under *key*, replacing any previous entry."""
        lifetime = self.default_ttl if ttl is None else ttl
        if lifetime <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._entries[key] = _Entry(value, self._clock(), lifetime)
        logger.debug("Cache set for %s (ttl=%ss)", key, lifetime)

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Drop every key containing *pattern*, or everything if it is None.

        Returns the number of entries removed.
        """
        with self._lock:
            if pattern is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [key for key in self._entries if pattern in key]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
        logger.info(
            "cache_invalidated", extra={"pattern": pattern, "removed": removed}
        )
        return removed

    def sweep(self) -> int:
        """Evict every expired entry; return how many were removed."""
        with self._lock:
            now = self._clock()
            doomed = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.info("cache_swept", extra={"removed": len(doomed)})
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        # Membership is a peek: no counters, no eviction
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.expired(self._clock())

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------
    def start_sweeper(
        self,
        scheduler,
        interval: float = config.CACHE_SWEEP_INTERVAL_SECONDS,
    ) -> int:
        """Register a periodic :meth:`sweep` on *scheduler* (idempotent)."""
        if self._sweep_task is not None:
            return self._sweep_task
        self._scheduler = scheduler
        self._sweep_task = scheduler.every(interval, self._safe_sweep)
        logger.info("Cache sweeper scheduled every %ss", interval)
        return self._sweep_task

    def stop_sweeper(self) -> None:
        """Cancel the periodic sweep if one is registered."""
        if self._sweep_task is None:
            return
        self._scheduler.cancel(self._sweep_task)
        self._sweep_task = None
        self._scheduler = None

    def _safe_sweep(self) -> None:
        try:
            self.sweep()
        except Exception:  # pragma: no cover – keep the scheduler alive
            logger.exception("Cache sweep failed")

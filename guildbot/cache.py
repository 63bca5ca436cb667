"""
Cache Service - TTL cache with single-flight loading for upstream reads.

Provides the process-wide key/value store used by the cached API facades:
- Per-entry TTL, checked lazily on read
- Concurrent misses on the same key share one in-flight fetch
- Failed fetches are never cached and never block a later retry
- Hit/miss/coalescing metrics for observability
"""

import asyncio
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .core.logger import ComponentLogger

T = TypeVar("T")

DEFAULT_TTL = 120.0
MAINTENANCE_INTERVAL = 600

# #################################################################################### #
#                            Cache Entry Management
# #################################################################################### #
class CacheEntry:
    """A cached value together with the moment it stops being valid."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, ttl: float, now: float):
        self.value = value
        self.expires_at = now + ttl

    def is_expired(self, now: float) -> bool:
        """
        Check if the cache entry has expired.

        Args:
            now: Current reading of the cache clock

        Returns:
            bool: True once the entry's TTL has elapsed
        """
        return now >= self.expires_at


# #################################################################################### #
#                            Cache Service Core
# #################################################################################### #
class CacheService:
    """TTL cache with request coalescing, constructed once at startup."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL in seconds applied when a caller gives none
            clock: Monotonic clock used for expiry decisions
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._maintenance_task: Optional[asyncio.Task] = None
        self._metrics = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "sets": 0,
            "evictions": 0,
            "fetch_failures": 0,
        }
        self._logger = ComponentLogger("cache")
        self._logger.debug("cache_initialized", default_ttl=default_ttl)

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._cache[key]
            self._metrics["evictions"] += 1
            return None
        return entry

    async def get_or_set(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """
        Return the cached value for key, loading it through fetch on a miss.

        Concurrent callers missing on the same key await a single fetch. A
        fetch that raises leaves nothing behind: the error propagates to every
        waiting caller and the next call starts a new fetch.

        Args:
            key: Cache key
            fetch: Zero-argument coroutine function producing the value
            ttl: TTL in seconds, defaults to the service default

        Returns:
            The cached or freshly fetched value
        """
        entry = self._live_entry(key)
        if entry is not None:
            self._metrics["hits"] += 1
            return entry.value

        task = self._inflight.get(key)
        if task is not None:
            self._metrics["coalesced"] += 1
            self._logger.debug("fetch_coalesced", cache_key=key)
        else:
            self._metrics["misses"] += 1
            task = asyncio.ensure_future(fetch())
            self._inflight[key] = task
            task.add_done_callback(
                partial(self._on_fetch_done, key, self.default_ttl if ttl is None else ttl)
            )

        return await asyncio.shield(task)

    def _on_fetch_done(self, key: str, ttl: float, task: asyncio.Task) -> None:
        """Store a settled fetch result and clear its in-flight marker."""
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            self._metrics["fetch_failures"] += 1
            return
        error = task.exception()
        if error is not None:
            self._metrics["fetch_failures"] += 1
            self._logger.debug("fetch_failed_not_cached",
                cache_key=key,
                error_type=type(error).__name__,
            )
            return
        self._cache[key] = CacheEntry(task.result(), ttl, self._clock())
        self._metrics["sets"] += 1

    def get(self, key: str) -> Optional[Any]:
        """
        Get a live value without triggering a fetch.

        Returns:
            Cached value or None if not found/expired
        """
        entry = self._live_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value directly, overwriting any existing entry."""
        self._cache[key] = CacheEntry(
            value, self.default_ttl if ttl is None else ttl, self._clock()
        )
        self._metrics["sets"] += 1

    def invalidate(self, key: str) -> bool:
        """
        Drop a single entry.

        Returns:
            True if an entry was removed
        """
        return self._cache.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """
        Drop every entry whose key starts with prefix.

        Returns:
            Number of entries removed
        """
        keys = [key for key in self._cache if key.startswith(prefix)]
        for key in keys:
            del self._cache[key]
        if keys:
            self._logger.info("prefix_invalidated", prefix=prefix, entry_count=len(keys))
        return len(keys)

    def clear(self) -> None:
        """Drop every cached entry. In-flight fetches are left to settle."""
        count = len(self._cache)
        self._cache.clear()
        self._logger.info("cache_cleared", entry_count=count)

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from the cache.

        Returns:
            Number of entries cleaned up
        """
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        if expired:
            self._metrics["evictions"] += len(expired)
            self._logger.debug("cache_cleanup", expired_count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._cache)

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get cache performance metrics.

        Returns:
            Dictionary with counters, hit rate and current sizes
        """
        total_requests = self._metrics["hits"] + self._metrics["misses"] + self._metrics["coalesced"]
        hit_rate = (self._metrics["hits"] / total_requests * 100) if total_requests else 0
        return {
            **self._metrics,
            "hit_rate": round(hit_rate, 2),
            "total_entries": len(self._cache),
            "inflight": len(self._inflight),
        }

    def start_maintenance(self, interval: float = MAINTENANCE_INTERVAL) -> asyncio.Task:
        """
        Start a background task pruning expired entries.

        Reads never depend on it; it only bounds memory held by dead entries.
        """
        async def maintenance_loop():
            try:
                while True:
                    await asyncio.sleep(interval)
                    self.cleanup_expired()
            except asyncio.CancelledError:
                self._logger.debug("maintenance_task_cancelled")
                raise

        if self._maintenance_task is None or self._maintenance_task.done():
            self._maintenance_task = asyncio.create_task(
                maintenance_loop(), name="cache_maintenance"
            )
            self._logger.info("maintenance_task_started", interval_seconds=interval)
        return self._maintenance_task

    async def stop(self) -> None:
        """Stop the maintenance task with a bounded wait."""
        task, self._maintenance_task = self._maintenance_task, None
        if task and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
        self._logger.info("cache_stopped", metrics=self.get_metrics())

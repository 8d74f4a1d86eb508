"""
Cache Service

Uniform get/set/delete/invalidate interface over an optional shared
Redis store with an always-available in-process fallback:
- TTL expiry with lazy purge on access plus a periodic sweep
- Tag-based bulk invalidation
- Single-flight get_or_set: concurrent misses on one key share a
  single computation
- Hit/miss/set/delete statistics

Backend failures never reach callers: they are logged, counted, and the
operation is served from the in-process store instead.

Concurrency model: one asyncio event loop. The in-process maps are only
touched between awaits, so no locking is needed; the in-flight registry
is the one piece of coordination. Do not share an instance across
threads or event loops.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, TypeVar, Union

from src.cache.backends import CacheBackend, CacheBackendError, MemoryBackend, MISSING
from src.cache.config import CacheConfig, get_cache_config, ttl_seconds
from src.cache.redis_cache import RedisBackend


logger = logging.getLogger(__name__)

T = TypeVar('T')

TTL = Union[int, float, timedelta]
ComputeFn = Callable[[], Union[T, Awaitable[T]]]


def _retrieve_exception(task: asyncio.Task):
    # Mark retrieved: waiting callers get the failure through shield, and
    # a load whose callers all went away must not warn at shutdown
    if not task.cancelled():
        task.exception()


@dataclass
class CacheStats:
    """Cache operation statistics."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0
    coalesced: int = 0

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage of all lookups."""
        total = self.hits + self.misses
        return self.hits / total * 100 if total > 0 else 0.0


class CacheService:
    """
    Process-wide cache, constructed explicitly and passed to consumers.

    Args:
        config: Cache configuration (defaults from environment)
        backend: Shared store tried first; None means in-process only
        local: In-process store used alone or as fallback
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        backend: Optional[CacheBackend] = None,
        local: Optional[MemoryBackend] = None,
    ):
        self.config = config or get_cache_config()
        self._backend = backend
        self._local = local if local is not None else MemoryBackend()
        self._stats = CacheStats()
        self._inflight: Dict[str, asyncio.Future] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def backend_name(self) -> str:
        return self._backend.name if self._backend is not None else self._local.name

    @property
    def local(self) -> MemoryBackend:
        return self._local

    def _ttl(self, ttl: Optional[TTL]) -> int:
        return ttl_seconds(self.config.default_ttl_seconds if ttl is None else ttl)

    @staticmethod
    def _check_key(key: str):
        if not key:
            raise ValueError("Cache key must be a non-empty string")

    def _backend_failed(self, operation: str, key: str, error: Exception):
        self._stats.errors += 1
        logger.warning(
            f"Cache backend {self._backend.name} failed on {operation} for {key!r}: "
            f"{error}. Falling back to in-process cache."
        )

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def _lookup(self, key: str) -> Any:
        """Read without touching statistics. Returns MISSING on miss."""
        if not self.config.enabled:
            return MISSING

        if self._backend is not None:
            try:
                return await self._backend.get(key)
            except CacheBackendError as e:
                self._backend_failed("get", key, e)

        return await self._local.get(key)

    async def _read(self, key: str) -> Any:
        value = await self._lookup(key)
        if value is MISSING:
            self._stats.misses += 1
        else:
            self._stats.hits += 1
        return value

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Returns default if the key is absent, expired, or caching is
        disabled. Counts a hit or a miss.
        """
        self._check_key(key)
        value = await self._read(key)
        return default if value is MISSING else value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[TTL] = None,
        tags: Optional[Iterable[str]] = None,
    ):
        """
        Store value under key, replacing any existing entry.

        Args:
            ttl: Seconds or timedelta (default: config.default_ttl_seconds)
            tags: Labels for invalidate_by_tag
        """
        self._check_key(key)
        if not self.config.enabled:
            return

        seconds = self._ttl(ttl)
        tags = list(tags or [])

        if self._backend is not None:
            try:
                await self._backend.set(key, value, seconds, tags)
                # Drop any copy written while the backend was down
                await self._local.delete(key)
                self._stats.sets += 1
                return
            except CacheBackendError as e:
                self._backend_failed("set", key, e)

        await self._local.set(key, value, seconds, tags)
        self._stats.sets += 1

    async def delete(self, key: str):
        """Delete a key. Absent keys are not an error."""
        self._check_key(key)

        if self._backend is not None:
            try:
                await self._backend.delete(key)
            except CacheBackendError as e:
                self._backend_failed("delete", key, e)

        await self._local.delete(key)
        self._stats.deletes += 1

    async def invalidate_by_tag(self, tag: str) -> int:
        """
        Remove every entry tagged with tag, then the tag record.

        Returns the number of entries removed.
        """
        removed = 0

        if self._backend is not None:
            try:
                removed += await self._backend.invalidate_tag(tag)
            except CacheBackendError as e:
                self._backend_failed("invalidate", f"tag:{tag}", e)

        removed += await self._local.invalidate_tag(tag)
        logger.info(f"Invalidated {removed} cache entries for tag: {tag}")
        return removed

    async def clear(self):
        """Remove all entries and tag records. Statistics are kept."""
        if self._backend is not None:
            try:
                await self._backend.clear()
            except CacheBackendError as e:
                self._backend_failed("clear", "*", e)

        await self._local.clear()
        logger.info("Cache cleared")

    async def has(self, key: str) -> bool:
        """Check if key holds an unexpired entry. Does not touch statistics."""
        self._check_key(key)
        if not self.config.enabled:
            return False

        if self._backend is not None:
            try:
                return await self._backend.exists(key)
            except CacheBackendError as e:
                self._backend_failed("exists", key, e)

        return await self._local.exists(key)

    async def get_ttl(self, key: str) -> int:
        """Remaining TTL in whole seconds, or -1 if the key is absent."""
        self._check_key(key)
        if not self.config.enabled:
            return -1

        if self._backend is not None:
            try:
                return await self._backend.ttl(key)
            except CacheBackendError as e:
                self._backend_failed("ttl", key, e)

        return await self._local.ttl(key)

    # =========================================================================
    # Compute-if-absent
    # =========================================================================

    async def get_or_set(
        self,
        key: str,
        compute_fn: ComputeFn,
        ttl: Optional[TTL] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        compute_fn may be a plain function or return an awaitable. When
        several callers miss on the same key at once, only one computation
        runs; the others wait for its result (or its exception).
        A failed computation writes nothing.

        The computation runs in its own task, so cancelling one waiting
        caller does not cancel it for the rest.

        There is no built-in timeout: wrap slow calls in asyncio.wait_for
        inside compute_fn.
        """
        self._check_key(key)

        pending = self._inflight.get(key)
        if pending is None:
            value = await self._read(key)
            if value is not MISSING:
                return value
            # A load may have started (or finished) while the read was suspended
            pending = self._inflight.get(key)
            if pending is None:
                pending = asyncio.create_task(self._load(key, compute_fn, ttl, tags))
                pending.add_done_callback(_retrieve_exception)
                self._inflight[key] = pending
                return await asyncio.shield(pending)

        self._stats.coalesced += 1
        logger.debug(f"Joining in-flight computation for {key!r}")
        return await asyncio.shield(pending)

    async def _load(
        self,
        key: str,
        compute_fn: ComputeFn,
        ttl: Optional[TTL],
        tags: Optional[Iterable[str]],
    ) -> Any:
        try:
            # Another load may have stored the value after our miss
            value = await self._lookup(key)
            if value is not MISSING:
                return value

            result = compute_fn()
            if inspect.isawaitable(result):
                result = await result
            await self.set(key, result, ttl=ttl, tags=tags)
            return result
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    @property
    def inflight_keys(self):
        return frozenset(self._inflight)

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of cache statistics."""
        stats = asdict(self._stats)
        stats.update({
            "hit_rate": self._stats.hit_rate,
            "backend": self.backend_name,
            "enabled": self.config.enabled,
            "local_entries": len(self._local),
            "inflight": len(self._inflight),
        })
        return stats

    def reset_stats(self):
        """Reset all counters to zero."""
        self._stats = CacheStats()
        logger.info("Cache statistics reset")

    async def health_check(self) -> Dict[str, Any]:
        """Check backend reachability."""
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled", "backend": self.backend_name}

        if self._backend is None:
            return {
                "healthy": True,
                "status": "in-process",
                "backend": self.backend_name,
                "stats": self.get_stats(),
            }

        start = time.time()
        try:
            await self._backend.ping()
            latency_ms = (time.time() - start) * 1000
            return {
                "healthy": True,
                "status": "connected",
                "backend": self.backend_name,
                "latency_ms": round(latency_ms, 2),
                "stats": self.get_stats(),
            }
        except CacheBackendError as e:
            # Still serving from the in-process store
            return {
                "healthy": False,
                "status": "degraded",
                "backend": self.backend_name,
                "error": str(e),
                "stats": self.get_stats(),
            }

    # =========================================================================
    # Expiry Sweep
    # =========================================================================

    async def cleanup(self) -> int:
        """
        Remove expired entries from the in-process store.

        Redis expires keys natively, so its backend sweep is a no-op.
        """
        removed = await self._local.cleanup()
        if self._backend is not None:
            try:
                removed += await self._backend.cleanup()
            except CacheBackendError as e:
                self._backend_failed("cleanup", "*", e)
        return removed

    def start_cleanup(self, interval_seconds: Optional[float] = None):
        """Start the periodic expiry sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            logger.warning("Cache cleanup already running")
            return

        interval = interval_seconds or self.config.cleanup_interval_seconds

        async def cleanup_loop():
            while True:
                await asyncio.sleep(interval)
                try:
                    removed = await self.cleanup()
                    if removed:
                        logger.info(f"Cache cleanup removed {removed} expired entries")
                except Exception as e:
                    logger.error(f"Cache cleanup error: {e}")

        self._cleanup_task = asyncio.create_task(cleanup_loop())
        logger.info(f"Cache cleanup started (interval: {interval}s)")

    async def stop_cleanup(self):
        """Cancel the periodic expiry sweep."""
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None
        logger.info("Cache cleanup stopped")

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def close(self):
        """Stop background work and release the backend."""
        await self.stop_cleanup()
        for task in list(self._inflight.values()):
            task.cancel()
        if self._backend is not None:
            await self._backend.close()


async def create_cache_service(
    config: Optional[CacheConfig] = None,
) -> CacheService:
    """
    Build a CacheService, choosing the backend by capability.

    Uses Redis when REDIS_URL is set and reachable, otherwise the
    in-process store alone.
    """
    config = config or get_cache_config()
    backend = None

    if config.enabled and config.redis_url:
        candidate = RedisBackend(config)
        try:
            await candidate.initialize()
            backend = candidate
        except CacheBackendError as e:
            logger.warning(f"Redis not available, using in-process cache: {e}")

    service = CacheService(config=config, backend=backend)
    logger.info(f"Cache service ready (backend: {service.backend_name})")
    return service

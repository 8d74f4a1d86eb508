"""
Ops Dashboard Caching Layer

Keeps the dashboard from hammering slow, rate-limited monitoring APIs
(Sentry, GitHub Actions, CircleCI):
- CacheService: TTL + tag cache with single-flight get_or_set
- RedisBackend: optional shared store with circuit breaker
- MemoryBackend: in-process store, used alone or as fallback
- CacheKeys / CacheTTL: key and TTL conventions for dashboard data

Usage:
    cache = await create_cache_service()
    cache.start_cleanup()

    metrics = await cache.get_or_set(
        CacheKeys.metrics.sentry("7d"),
        lambda: sentry_client.fetch_metrics("7d"),
        ttl=CacheTTL.METRICS_SENTRY,
        tags=["metrics", "sentry"],
    )

    # Invalidate on changes
    await cache.invalidate_by_tag("sentry")
"""

from src.cache.config import CacheConfig, CacheTTL, get_cache_config
from src.cache.backends import (
    CacheBackend,
    CacheBackendError,
    CacheEntry,
    MemoryBackend,
    MISSING,
)
from src.cache.redis_cache import RedisBackend, CircuitBreaker
from src.cache.service import CacheService, CacheStats, create_cache_service
from src.cache.keys import CacheKeys

__all__ = [
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Backends
    "CacheBackend",
    "CacheBackendError",
    "CacheEntry",
    "MemoryBackend",
    "MISSING",
    "RedisBackend",
    "CircuitBreaker",
    # Service
    "CacheService",
    "CacheStats",
    "create_cache_service",
    # Keys
    "CacheKeys",
]

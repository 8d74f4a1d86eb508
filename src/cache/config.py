"""
Cache Configuration

Centralized configuration for the caching layer.
TTLs here are the defaults used by the dashboard metrics handlers.

Redis is optional: without REDIS_URL the in-process store is used.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Union
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by data type.

    Metrics wrap slow, quota-limited monitoring APIs (Sentry, GitHub
    Actions), so they are cached for a few minutes at a time.
    """

    DEFAULT: timedelta = timedelta(minutes=5)

    # Metrics
    METRICS_OVERVIEW: timedelta = timedelta(minutes=2)
    METRICS_SENTRY: timedelta = timedelta(minutes=3)
    METRICS_CICD: timedelta = timedelta(minutes=3)
    METRICS_CONFLICTS: timedelta = timedelta(minutes=5)
    METRICS_TIMELINE: timedelta = timedelta(minutes=5)
    METRICS_SYSTEM_HEALTH: timedelta = timedelta(minutes=1)

    # Reports
    REPORTS_HISTORY: timedelta = timedelta(minutes=10)
    REPORTS_SCHEDULED: timedelta = timedelta(minutes=10)

    @classmethod
    def for_resource(cls, resource: str) -> timedelta:
        """Get TTL for a metrics/report resource name."""
        mapping = {
            "overview": cls.METRICS_OVERVIEW,
            "sentry": cls.METRICS_SENTRY,
            "cicd": cls.METRICS_CICD,
            "conflicts": cls.METRICS_CONFLICTS,
            "timeline": cls.METRICS_TIMELINE,
            "system-health": cls.METRICS_SYSTEM_HEALTH,
            "history": cls.REPORTS_HISTORY,
            "scheduled": cls.REPORTS_SCHEDULED,
        }
        return mapping.get(resource, cls.DEFAULT)


def ttl_seconds(ttl: Union[int, float, timedelta]) -> int:
    """Normalize a TTL given as seconds or timedelta to whole seconds (min 1)."""
    if isinstance(ttl, timedelta):
        ttl = ttl.total_seconds()
    return max(1, int(ttl))


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - REDIS_URL: Use Redis as the shared store (falls back to memory)
    - CACHE_CLEANUP_INTERVAL: Seconds between expiry sweeps
    """

    # Cache namespace (for Redis key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "opsdash"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")

    default_ttl_seconds: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_DEFAULT_TTL",
        "300"
    )))

    cleanup_interval_seconds: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CLEANUP_INTERVAL",
        "300"
    )))

    # Redis settings (optional)
    redis_url: Optional[str] = field(default_factory=lambda: os.getenv(
        "REDIS_URL"
    ))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "50"
    )))
    redis_socket_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_SOCKET_TIMEOUT",
        "5.0"
    )))
    redis_connect_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_CONNECT_TIMEOUT",
        "5.0"
    )))

    # Circuit breaker around Redis
    circuit_breaker_enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_CIRCUIT_BREAKER_ENABLED",
        "true"
    ).lower() == "true")
    circuit_breaker_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_THRESHOLD",
        "5"
    )))
    circuit_breaker_timeout: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_TIMEOUT",
        "60"
    )))


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()

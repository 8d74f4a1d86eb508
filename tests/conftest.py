"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import pytest
from typing import Any, Iterable

from src.cache import CacheConfig, CacheService, MemoryBackend
from src.cache.backends import CacheBackend, CacheBackendError
from src.notifications import NotificationService
from src.utils.config import Settings


# ============================================================================
# Helpers
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock for expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FailingBackend(CacheBackend):
    """Shared store that is always down."""

    name = "failing"

    def __init__(self):
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise CacheBackendError("connection refused")

    async def get(self, key: str) -> Any:
        self._fail()

    async def set(self, key: str, value: Any, ttl_seconds: int, tags: Iterable[str] = ()):
        self._fail()

    async def delete(self, key: str) -> bool:
        self._fail()

    async def invalidate_tag(self, tag: str) -> int:
        self._fail()

    async def clear(self) -> None:
        self._fail()

    async def exists(self, key: str) -> bool:
        self._fail()

    async def ttl(self, key: str) -> int:
        self._fail()

    async def ping(self) -> bool:
        self._fail()


# ============================================================================
# Cache Fixtures
# ============================================================================

@pytest.fixture
def cache_config() -> CacheConfig:
    """In-process cache config isolated from the environment."""
    return CacheConfig(
        namespace="test",
        enabled=True,
        default_ttl_seconds=300,
        cleanup_interval_seconds=300,
        redis_url=None,
        circuit_breaker_enabled=True,
        circuit_breaker_threshold=2,
        circuit_breaker_timeout=60,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(cache_config, clock) -> CacheService:
    """Memory-only cache driven by a fake clock."""
    return CacheService(config=cache_config, local=MemoryBackend(clock=clock))


@pytest.fixture
def failing_backend() -> FailingBackend:
    return FailingBackend()


@pytest.fixture
def degraded_cache(cache_config, clock, failing_backend) -> CacheService:
    """Cache whose shared store is down."""
    return CacheService(
        config=cache_config,
        backend=failing_backend,
        local=MemoryBackend(clock=clock),
    )


# ============================================================================
# Notification Fixtures
# ============================================================================

@pytest.fixture
def hub() -> NotificationService:
    return NotificationService(max_notifications=10)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        REDIS_URL=None,
        NOTIFICATIONS_MAX=10,
        SSE_HEARTBEAT_SECONDS=0.05,
        SSE_BUFFER_SIZE=10,
    )

"""
Redis Cache Backend

Shared cache store with:
- Namespace isolation (all keys under "<namespace>:")
- Tag membership sets ("<namespace>:tag:<tag>") for bulk invalidation
- Circuit breaker for resilience
- Async operations throughout

Every Redis failure surfaces as CacheBackendError so the service can
fall back to the in-process store.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError, WatchError

from src.cache.backends import CacheBackend, CacheBackendError, MISSING
from src.cache.config import CacheConfig, get_cache_config
from src.cache.serialization import serialize_value, deserialize_value


logger = logging.getLogger(__name__)

# Optimistic-lock retries for tag invalidation
MAX_WATCH_RETRIES = 5


@dataclass
class CircuitBreakerState:
    """Circuit breaker state tracking."""
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False
    opened_at: float = 0.0


class CircuitBreaker:
    """
    Circuit breaker pattern for Redis connection.

    Prevents thundering herd when Redis is down by failing fast
    after threshold failures, then gradually recovering.
    """

    def __init__(
        self,
        threshold: int = 5,
        timeout: int = 60,
    ):
        self.threshold = threshold
        self.timeout = timeout
        self.state = CircuitBreakerState()
        self._lock = asyncio.Lock()

    async def is_available(self) -> bool:
        """Check if circuit allows requests."""
        if not self.state.is_open:
            return True

        if time.time() - self.state.opened_at >= self.timeout:
            async with self._lock:
                # Half-open state - allow requests through again
                self.state.is_open = False
                self.state.failures = 0
                logger.info("Circuit breaker closed, allowing requests")
            return True

        return False

    async def record_success(self):
        """Record successful operation."""
        async with self._lock:
            self.state.failures = 0
            self.state.is_open = False

    async def record_failure(self):
        """Record failed operation."""
        async with self._lock:
            self.state.failures += 1
            self.state.last_failure = time.time()

            if self.state.failures >= self.threshold and not self.state.is_open:
                self.state.is_open = True
                self.state.opened_at = time.time()
                logger.warning(
                    f"Circuit breaker opened after {self.state.failures} failures. "
                    f"Will retry in {self.timeout} seconds."
                )


class RedisBackend(CacheBackend):
    """
    Redis-backed cache store.

    Entries expire natively (SETEX), so cleanup() is a no-op.
    """

    name = "redis"

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis
        self._circuit_breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        ) if self.config.circuit_breaker_enabled else None
        self._initialized = redis is not None

    async def initialize(self):
        """Create the connection pool and verify connectivity."""
        if self._initialized:
            return

        if not self.config.redis_url:
            raise CacheBackendError("REDIS_URL is not configured")

        try:
            self._pool = ConnectionPool.from_url(
                self.config.redis_url,
                max_connections=self.config.redis_max_connections,
                socket_timeout=self.config.redis_socket_timeout,
                socket_connect_timeout=self.config.redis_connect_timeout,
                decode_responses=False,  # We handle bytes directly
            )
            self._redis = Redis(connection_pool=self._pool)
            await self._redis.ping()
            self._initialized = True
            logger.info(f"Redis cache initialized: {self.config.redis_url}")

        except (RedisError, OSError) as e:
            await self.close()
            raise CacheBackendError(f"Failed to initialize Redis: {e}") from e

    async def close(self):
        """Close Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
        self._redis = None
        self._pool = None
        self._initialized = False

    @property
    def circuit_open(self) -> bool:
        return bool(self._circuit_breaker and self._circuit_breaker.state.is_open)

    @asynccontextmanager
    async def _guard(self, operation: str):
        """Apply the circuit breaker and translate Redis errors."""
        if self._redis is None:
            raise CacheBackendError("Redis is not initialized")
        if self._circuit_breaker and not await self._circuit_breaker.is_available():
            raise CacheBackendError("Circuit breaker is open")

        try:
            yield
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            if self._circuit_breaker:
                await self._circuit_breaker.record_failure()
            raise CacheBackendError(f"Redis {operation} failed: {e}") from e

        if self._circuit_breaker:
            await self._circuit_breaker.record_success()

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self.config.namespace}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.config.namespace}:tag:{tag}"

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Any:
        async with self._guard("get"):
            data = await self._redis.get(self._make_key(key))

        if data is None:
            return MISSING

        try:
            return deserialize_value(data)
        except ValueError as e:
            raise CacheBackendError(f"Corrupt cache value for {key}: {e}") from e

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        tags: Iterable[str] = (),
    ) -> None:
        data = serialize_value(value)
        tags = list(dict.fromkeys(tags))

        async with self._guard("set"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.setex(self._make_key(key), ttl_seconds, data)
                for tag in tags:
                    pipe.sadd(self._tag_key(tag), key)
                    pipe.ttl(self._tag_key(tag))
                results = await pipe.execute()

            # Tag sets must outlive every member they list
            tag_ttls = results[2::2]
            stale = [
                tag for tag, current in zip(tags, tag_ttls)
                if current is None or current < ttl_seconds
            ]
            if stale:
                async with self._redis.pipeline(transaction=True) as pipe:
                    for tag in stale:
                        pipe.expire(self._tag_key(tag), ttl_seconds)
                    await pipe.execute()

    async def delete(self, key: str) -> bool:
        async with self._guard("delete"):
            return await self._redis.delete(self._make_key(key)) > 0

    async def invalidate_tag(self, tag: str) -> int:
        tag_key = self._tag_key(tag)

        async with self._guard("invalidate"):
            for attempt in range(MAX_WATCH_RETRIES):
                try:
                    async with self._redis.pipeline(transaction=True) as pipe:
                        await pipe.watch(tag_key)
                        members = await pipe.smembers(tag_key)
                        keys = [
                            self._make_key(m.decode() if isinstance(m, bytes) else m)
                            for m in members
                        ]
                        pipe.multi()
                        if keys:
                            pipe.delete(*keys)
                        pipe.delete(tag_key)
                        results = await pipe.execute()
                    return results[0] if keys else 0
                except WatchError:
                    logger.debug(f"Tag {tag} changed during invalidation, retry {attempt + 1}")

        raise CacheBackendError(f"Tag {tag} kept changing during invalidation")

    async def clear(self) -> None:
        pattern = f"{self.config.namespace}:*"
        async with self._guard("clear"):
            batch: List[bytes] = []
            async for key in self._redis.scan_iter(match=pattern, count=100):
                batch.append(key)
                if len(batch) >= 500:
                    await self._redis.delete(*batch)
                    batch = []
            if batch:
                await self._redis.delete(*batch)

    async def exists(self, key: str) -> bool:
        async with self._guard("exists"):
            return await self._redis.exists(self._make_key(key)) > 0

    async def ttl(self, key: str) -> int:
        async with self._guard("ttl"):
            remaining = await self._redis.ttl(self._make_key(key))
        return remaining if remaining >= 0 else -1

    async def ping(self) -> bool:
        async with self._guard("ping"):
            return bool(await self._redis.ping())

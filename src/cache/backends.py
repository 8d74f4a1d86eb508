"""
Cache Storage Backends

A CacheService talks to storage only through the CacheBackend interface.
Two implementations exist:
- MemoryBackend: in-process dict with a tag index (always available)
- RedisBackend: shared Redis store (see redis_cache.py)

Backends do not keep statistics and do not fall back on their own;
that is the service's job.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Set


logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel type for cache misses (None is a valid cached value)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class CacheBackendError(Exception):
    """Raised when a storage backend cannot serve a request."""


@dataclass
class CacheEntry:
    """A single cached value."""
    key: str
    value: Any
    expires_at: float
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class CacheBackend(ABC):
    """Storage interface used by CacheService."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value, or MISSING if absent or expired."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        tags: Iterable[str] = (),
    ) -> None:
        """Store value under key, replacing any existing entry."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key. Returns True if something was removed."""

    @abstractmethod
    async def invalidate_tag(self, tag: str) -> int:
        """Remove every entry carrying tag, then the tag record."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove all entries and tag records."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining whole seconds, or -1 if absent."""

    async def cleanup(self) -> int:
        """Sweep expired entries. Backends with native expiry do nothing."""
        return 0

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryBackend(CacheBackend):
    """
    In-process cache store.

    None of the methods await, so under asyncio each call runs to
    completion without interleaving; tag invalidation and replacement
    are therefore atomic with respect to other tasks.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._tag_index: Dict[str, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _unindex(self, entry: CacheEntry):
        for tag in entry.tags:
            members = self._tag_index.get(tag)
            if members is None:
                continue
            members.discard(entry.key)
            if not members:
                del self._tag_index[tag]

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._unindex(entry)
        return True

    def _live_entry(self, key: str):
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._remove(key)
            return None
        return entry

    async def get(self, key: str) -> Any:
        entry = self._live_entry(key)
        if entry is None:
            return MISSING
        return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        tags: Iterable[str] = (),
    ) -> None:
        self._remove(key)
        entry = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + ttl_seconds,
            tags=frozenset(tags),
        )
        self._entries[key] = entry
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(key)

    async def delete(self, key: str) -> bool:
        return self._remove(key)

    async def invalidate_tag(self, tag: str) -> int:
        keys = self._tag_index.pop(tag, set())
        removed = 0
        for key in keys:
            if self._remove(key):
                removed += 1
        return removed

    async def clear(self) -> None:
        self._entries.clear()
        self._tag_index.clear()

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def ttl(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None:
            return -1
        return max(0, math.floor(entry.expires_at - self._clock()))

    async def cleanup(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def tags_for(self, key: str) -> FrozenSet[str]:
        entry = self._entries.get(key)
        return entry.tags if entry else frozenset()

    def tag_members(self, tag: str) -> FrozenSet[str]:
        return frozenset(self._tag_index.get(tag, ()))

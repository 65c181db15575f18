import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from .config import settings
from .models import CacheStats

logger = structlog.get_logger()


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: Optional[float] = None  # None means the entry never expires

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CacheService:
    """In-memory key/value cache with per-key TTL.

    A single instance is shared by every collaborator that memoizes lookups.
    Expired entries are dropped lazily on read and proactively by ``sweep``,
    which the background task manager runs on a fixed interval.
    """

    def __init__(self, default_ttl: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = settings.CACHE_DEFAULT_TTL if default_ttl is None else default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value under key. A ttl of zero or less keeps it until deleted."""
        if ttl is None:
            ttl = self.default_ttl

        expires_at = self._clock() + ttl if ttl > 0 else None
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=expires_at)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live_entry(key)
        return entry.value if entry else default

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        logger.info("cache_cleared", entries=len(self._entries))
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(size=len(self._entries), keys=list(self._entries))

    def sweep(self) -> int:
        """Evict every expired entry; returns how many were removed"""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
        """Return the cached value or await factory() and cache its result"""
        entry = self._live_entry(key)
        if entry is not None:
            return entry.value

        value = await factory()
        self.set(key, value, ttl)
        return value

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def __len__(self) -> int:
        return len(self._entries)

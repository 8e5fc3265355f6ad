"""In-memory TTL cache with lazy expiry.

Each cache domain (entities, canonical ids, release lists, ...) owns its own
instance so keyspaces never collide. A cached ``None`` is a confirmed negative
lookup and is reported as such; absence is reported with the ``MISS`` sentinel.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Final, Generic, TypeVar

T = TypeVar("T")


class _Miss:
    """Sentinel type for a cache miss."""

    _instance: _Miss | None = None

    def __new__(cls) -> _Miss:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()


@dataclass
class CacheEntry(Generic[T]):
    """Cached value with absolute expiry in epoch milliseconds."""

    value: T | None
    expires_at_ms: int


class TTLCache(Generic[T]):
    """
    Key/value store whose entries expire a fixed time after insertion.

    Expiry is checked only on read; there is no background sweep. The map is
    guarded by a lock so it can be shared between threads as well as tasks.
    """

    def __init__(self, name: str, default_ttl_s: float):
        self.name = name
        self.default_ttl_s = default_ttl_s
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    def get(self, key: str) -> T | None | _Miss:
        """Return the cached value (possibly ``None``) or ``MISS``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return MISS
            if self._now_ms() > entry.expires_at_ms:
                del self._entries[key]
                self.misses += 1
                return MISS
            self.hits += 1
            return entry.value

    def set(self, key: str, value: T | None, ttl_s: float | None = None) -> None:
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        expires_at = self._now_ms() + int(ttl * 1000)
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at_ms=expires_at)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
            }


## Tests


def test_ttl_cache_miss_vs_cached_none():
    cache: TTLCache[str] = TTLCache("test", default_ttl_s=60)
    assert cache.get("absent") is MISS

    cache.set("negative", None)
    assert cache.get("negative") is None
    assert cache.get("negative") is not MISS


def test_ttl_cache_expired_entry_is_miss():
    from freezegun import freeze_time

    with freeze_time("2024-01-01 00:00:00") as frozen:
        cache: TTLCache[str] = TTLCache("test", default_ttl_s=10)
        cache.set("k", "v")
        assert cache.get("k") == "v"

        frozen.tick(11)
        assert cache.get("k") is MISS
        assert len(cache) == 0


def test_ttl_cache_per_entry_ttl():
    from freezegun import freeze_time

    with freeze_time("2024-01-01 00:00:00") as frozen:
        cache: TTLCache[int] = TTLCache("test", default_ttl_s=100)
        cache.set("short", 1, ttl_s=1)
        cache.set("long", 2)
        frozen.tick(5)
        assert cache.get("short") is MISS
        assert cache.get("long") == 2


def test_ttl_cache_stats():
    cache: TTLCache[int] = TTLCache("stats", default_ttl_s=60)
    cache.set("a", 1)
    cache.get("a")
    cache.get("b")
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["entries"] == 1


def test_miss_sentinel_is_falsy_singleton():
    assert not MISS
    assert _Miss() is MISS
    assert repr(MISS) == "MISS"

"""In-memory LRU cache with TTL expiry for query results.

Entries live in an ``OrderedDict`` whose order is the recency order: the first
entry is the least recently used one. Reads and writes move the touched entry
to the end in O(1).

The cache does no locking. ``set``, ``get`` and ``has`` each remove and
reinsert an entry, which is not atomic; share an instance between threads only
behind an external lock.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, TypeVar

from docfusion.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

V = TypeVar("V")

_MISSING = object()


@dataclass(slots=True, frozen=True)
class CacheConfig:
    max_size: int = 100
    ttl_ms: float = 300_000

    def __post_init__(self) -> None:
        if self.max_size <= 0:
            raise ConfigurationError("max_size must be greater than 0")
        if self.ttl_ms <= 0:
            raise ConfigurationError("ttl_ms must be greater than 0")


@dataclass(slots=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    hit_rate: float
    size: int
    max_size: int


@dataclass(slots=True)
class _CacheEntry(Generic[V]):
    value: V
    timestamp: float


class BoundedCache(Generic[V]):
    """Least-recently-used cache whose entries expire after ``ttl_ms``.

    ``clock`` returns the current time in seconds and defaults to
    :func:`time.monotonic`; tests inject a fake one.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[Hashable, _CacheEntry[V]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return self.size()

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _is_expired(self, entry: _CacheEntry[V]) -> bool:
        return self._now_ms() - entry.timestamp > self.config.ttl_ms

    def _lookup(self, key: Hashable) -> _CacheEntry[V] | None:
        """Return the live entry for ``key`` and mark it most recently used."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def set(self, key: Hashable, value: V) -> None:
        """Store ``value``, evicting the least recently used entry when full."""
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.config.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            LOGGER.debug("Evicted cache entry %r", evicted)
        self._entries[key] = _CacheEntry(value=value, timestamp=self._now_ms())

    def get(self, key: Hashable, default: Any = None) -> V | Any:
        """Return the cached value, or ``default`` on a miss."""
        entry = self._lookup(key)
        if entry is None:
            self._misses += 1
            return default
        self._hits += 1
        return entry.value

    def has(self, key: Hashable) -> bool:
        """Like :meth:`get` for presence, but leaves the hit/miss counters alone."""
        return self._lookup(key) is not None

    def get_or_set(self, key: Hashable, factory: Callable[[], V]) -> V:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value)
        return value

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry. Statistics are kept."""
        self._entries.clear()

    def size(self) -> int:
        """Number of live entries; expired entries are purged first."""
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(self._entries)

    def get_stats(self) -> CacheStats:
        requests = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            hit_rate=self._hits / requests if requests else 0.0,
            size=len(self._entries),
            max_size=self.config.max_size,
        )

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._evictions = 0

"""Bounded in-memory caches: an O(1) LRU and a TTL cache with FIFO overflow."""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        """Percentage of lookups that hit, 0.0 when nothing was looked up."""
        total = self.hits + self.misses
        return (self.hits / total) * 100 if total else 0.0


@dataclass
class _Node(Generic[V]):
    key: str
    value: V
    prev: _Node[V] | None = field(default=None, repr=False)
    next: _Node[V] | None = field(default=None, repr=False)


class LRUCache(Generic[V]):
    """
    Least-recently-used cache with O(1) get, set and eviction.

    A dict indexes nodes of a doubly linked list ordered from most to least
    recently used. Inserting beyond ``max_size`` evicts the tail.
    """

    def __init__(self, max_size: int) -> None:
        if max_size <= 0:
            raise ValueError("LRUCache max_size must be positive")
        self.max_size = max_size
        self.stats = CacheStats()
        self._nodes: dict[str, _Node[V]] = {}
        self._head: _Node[V] | None = None
        self._tail: _Node[V] | None = None

    def get(self, key: str) -> V | None:
        node = self._nodes.get(key)
        if node is None:
            self.stats.misses += 1
            return None
        self.stats.hits += 1
        self._move_to_head(node)
        return node.value

    def set(self, key: str, value: V) -> None:
        node = self._nodes.get(key)
        if node is not None:
            node.value = value
            self._move_to_head(node)
            return
        node = _Node(key=key, value=value)
        self._nodes[key] = node
        self._add_to_head(node)
        if len(self._nodes) > self.max_size:
            self._evict_tail()

    def delete(self, key: str) -> bool:
        node = self._nodes.pop(key, None)
        if node is None:
            return False
        self._unlink(node)
        return True

    def clear(self) -> None:
        self._nodes.clear()
        self._head = None
        self._tail = None
        self.stats = CacheStats()

    def keys(self) -> list[str]:
        """Keys from most to least recently used."""
        return [key for key, _ in self.items()]

    def items(self) -> Iterator[tuple[str, V]]:
        node = self._head
        while node is not None:
            yield node.key, node.value
            node = node.next

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # ── Linked list ────────────────────────────────────────────────────────────

    def _move_to_head(self, node: _Node[V]) -> None:
        if node is self._head:
            return
        self._unlink(node)
        self._add_to_head(node)

    def _add_to_head(self, node: _Node[V]) -> None:
        node.prev = None
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        self._head = node
        if self._tail is None:
            self._tail = node

    def _unlink(self, node: _Node[V]) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        else:
            self._head = node.next
        if node.next is not None:
            node.next.prev = node.prev
        else:
            self._tail = node.prev
        node.prev = node.next = None

    def _evict_tail(self) -> None:
        tail = self._tail
        if tail is None:
            return
        self._unlink(tail)
        del self._nodes[tail.key]
        self.stats.evictions += 1


class TTLCache(Generic[V]):
    """In-memory cache with TTL expiration and max-size eviction (FIFO)."""

    def __init__(self, ttl: float, max_size: int = 1_000, clock: Clock = time.monotonic) -> None:
        """
        Args:
            ttl: Time-to-live in seconds for each cached entry.
            max_size: Maximum number of entries before FIFO eviction.
            clock: Monotonic time source; injectable for tests.
        """
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._store: dict[str, tuple[V, float]] = {}

    def get(self, key: str) -> V | None:
        """Return the cached value if present and not expired, else None."""
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() > expires_at:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        """Store a value. Evicts expired entries, then the oldest ones if full."""
        self.evict_expired()
        self._store.pop(key, None)
        while len(self._store) >= self.max_size:
            del self._store[next(iter(self._store))]
        self._store[key] = (value, self._clock() + (self.ttl if ttl is None else ttl))

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        self._store.clear()

    def evict_expired(self) -> int:
        """Remove all expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, (_, exp) in self._store.items() if now > exp]
        for key in expired:
            del self._store[key]
        return len(expired)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._store)


def make_cache_key(*parts: Any) -> str:
    """Create a deterministic cache key: SHA-256 of the colon-joined parts."""
    raw = ":".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode()).hexdigest()

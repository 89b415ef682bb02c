"""File-content cache with mtime/size invalidation and a time-to-live."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path

import structlog

from lethe.cache.lru import CacheStats, Clock, LRUCache

_logger = structlog.get_logger("lethe.cache")


@dataclass
class FileEntry:
    content: str
    mtime_ns: int
    size: int
    cached_at: float


class FileContentCache:
    """
    Reuse file contents across repeated reads of the same path.

    An entry is served only while the file's mtime and size are unchanged
    and the entry is younger than ``ttl`` seconds. Each instance is
    independent; engines receive one by injection.

    Example::

        cache = FileContentCache(max_entries=64, ttl=30.0)
        text = await cache.read("src/app.py")
    """

    def __init__(self, max_entries: int = 256, ttl: float = 30.0, clock: Clock = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: LRUCache[FileEntry] = LRUCache(max_entries)

    @property
    def stats(self) -> CacheStats:
        return self._entries.stats

    def read_sync(self, path: str | Path) -> str:
        """
        Return the text of ``path``, from cache when still valid.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
        """
        resolved = Path(path).expanduser().resolve()
        key = str(resolved)
        stat = resolved.stat()
        now = self._clock()

        cached = self._entries.get(key)
        if cached is not None:
            fresh = now - cached.cached_at <= self.ttl
            if fresh and cached.mtime_ns == stat.st_mtime_ns and cached.size == stat.st_size:
                cached.cached_at = now
                return cached.content
            self._entries.delete(key)
            _logger.debug("file_cache_invalidated", path=key, expired=not fresh)

        content = resolved.read_text(encoding="utf-8")
        self._entries.set(
            key,
            FileEntry(content=content, mtime_ns=stat.st_mtime_ns, size=stat.st_size, cached_at=now),
        )
        return content

    async def read(self, path: str | Path) -> str:
        """Async wrapper around :meth:`read_sync`; disk I/O runs in a worker thread."""
        return await asyncio.to_thread(self.read_sync, path)

    def invalidate(self, path: str | Path) -> bool:
        return self._entries.delete(str(Path(path).expanduser().resolve()))

    def clear(self) -> None:
        self._entries.clear()

    def clean_expired(self) -> int:
        """Drop entries older than ``ttl`` and return how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.cached_at > self.ttl]
        for key in expired:
            self._entries.delete(key)
        return len(expired)

    def total_size(self) -> int:
        return sum(entry.size for _, entry in self._entries.items())

    def __len__(self) -> int:
        return len(self._entries)

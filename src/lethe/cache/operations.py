"""Short-window cache that suppresses repeated identical tool operations."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from lethe.cache.lru import Clock, TTLCache, make_cache_key
from lethe.hashing.digest import normalize_params, stable_stringify

_logger = structlog.get_logger("lethe.cache")


class OperationDedupCache:
    """
    Remember results of recent operations keyed by ``(kind, params)``.

    Unlike the deduplication strategy, which prunes calls that already ran,
    this cache avoids running an identical operation twice within
    ``window`` seconds.

    Example::

        ops = OperationDedupCache(window=300.0)
        result, reused = await ops.run("glob", {"pattern": "**/*.py"}, do_glob)
    """

    def __init__(self, window: float = 300.0, max_entries: int = 1_000, clock: Clock = time.monotonic):
        self._results: TTLCache[Any] = TTLCache(ttl=window, max_size=max_entries, clock=clock)
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(kind: str, params: dict[str, Any] | None) -> str:
        return make_cache_key(kind, stable_stringify(normalize_params(params) or {}))

    def lookup(self, kind: str, params: dict[str, Any] | None) -> Any | None:
        return self._results.get(self.key(kind, params))

    async def run(
        self,
        kind: str,
        params: dict[str, Any] | None,
        runner: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, bool]:
        """
        Return a cached result for the operation, or await ``runner`` and cache it.

        Exceptions from ``runner`` propagate and nothing is cached.

        Returns:
            ``(result, reused)`` where ``reused`` is True on a cache hit.
        """
        key = self.key(kind, params)
        cached = self._results.get(key)
        if cached is not None:
            self.hits += 1
            _logger.debug("operation_reused", kind=kind)
            return cached, True
        self.misses += 1
        result = await runner()
        if result is not None:
            self._results.set(key, result)
        return result, False

    def clear(self) -> None:
        self._results.clear()

    def __len__(self) -> int:
        return len(self._results)

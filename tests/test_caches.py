"""Tests for the LRU/TTL caches, the file-content cache and the operation cache."""

from __future__ import annotations

import os

import pytest

from lethe.cache.files import FileContentCache
from lethe.cache.lru import LRUCache, TTLCache, make_cache_key
from lethe.cache.operations import OperationDedupCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestLRUCache:
    def test_evicts_least_recently_used(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.get("a") == 1  # a is now most recent
        cache.set("c", 3)
        assert "b" not in cache
        assert cache.keys() == ["c", "a"]
        assert cache.stats.evictions == 1

    def test_update_moves_to_head(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=3)
        for key in ("a", "b", "c"):
            cache.set(key, 0)
        cache.set("a", 9)
        assert cache.keys() == ["a", "c", "b"]
        assert cache.get("a") == 9

    def test_hit_rate(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=2)
        assert cache.stats.hit_rate == 0.0
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.stats.hit_rate == 50.0

    def test_delete_and_clear(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=2)
        cache.set("a", 1)
        assert cache.delete("a")
        assert not cache.delete("a")
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0
        assert cache.keys() == []

    def test_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError):
            LRUCache(max_size=0)


class TestTTLCache:
    def test_entries_expire(self) -> None:
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(ttl=10.0, clock=clock)
        cache.set("k", "v")
        clock.advance(9.0)
        assert cache.get("k") == "v"
        clock.advance(2.0)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self) -> None:
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(ttl=10.0, clock=clock)
        cache.set("short", "v", ttl=1.0)
        cache.set("long", "v")
        clock.advance(5.0)
        assert "short" not in cache
        assert "long" in cache

    def test_fifo_overflow(self) -> None:
        """When full, the oldest inserted entry is dropped."""
        cache: TTLCache[int] = TTLCache(ttl=60.0, max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_evict_expired_counts(self) -> None:
        clock = FakeClock()
        cache: TTLCache[int] = TTLCache(ttl=1.0, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        clock.advance(2.0)
        assert cache.evict_expired() == 2

    def test_make_cache_key_deterministic(self) -> None:
        assert make_cache_key("a", 1) == make_cache_key("a", 1)
        assert make_cache_key("a", 1) != make_cache_key("a", 2)
        assert len(make_cache_key("x")) == 64


class TestFileContentCache:
    def test_second_read_hits(self, tmp_path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("hello", encoding="utf-8")
        cache = FileContentCache(max_entries=4, ttl=30.0, clock=FakeClock())
        assert cache.read_sync(path) == "hello"
        assert cache.read_sync(path) == "hello"
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.total_size() == 5

    def test_changed_file_is_reread(self, tmp_path) -> None:
        """A size or mtime change invalidates the entry."""
        path = tmp_path / "a.txt"
        path.write_text("hello", encoding="utf-8")
        cache = FileContentCache(clock=FakeClock())
        cache.read_sync(path)
        path.write_text("hello, world", encoding="utf-8")
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))
        assert cache.read_sync(path) == "hello, world"

    def test_ttl_expiry(self, tmp_path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("hello", encoding="utf-8")
        clock = FakeClock()
        cache = FileContentCache(ttl=5.0, clock=clock)
        cache.read_sync(path)
        clock.advance(10.0)
        assert cache.clean_expired() == 1
        assert len(cache) == 0

    def test_missing_file_raises(self, tmp_path) -> None:
        cache = FileContentCache()
        with pytest.raises(FileNotFoundError):
            cache.read_sync(tmp_path / "nope.txt")

    async def test_async_read(self, tmp_path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("async", encoding="utf-8")
        cache = FileContentCache()
        assert await cache.read(str(path)) == "async"
        assert cache.invalidate(path)
        assert len(cache) == 0


class TestOperationDedupCache:
    async def test_identical_operation_reused(self) -> None:
        calls = 0

        async def runner():
            nonlocal calls
            calls += 1
            return ["a.py", "b.py"]

        ops = OperationDedupCache(window=60.0, clock=FakeClock())
        first, reused_first = await ops.run("glob", {"pattern": "*.py"}, runner)
        second, reused_second = await ops.run("glob", {"pattern": "*.py", "path": None}, runner)
        assert first == second == ["a.py", "b.py"]
        assert (reused_first, reused_second) == (False, True)
        assert calls == 1
        assert (ops.hits, ops.misses) == (1, 1)

    async def test_window_expiry(self) -> None:
        clock = FakeClock()
        calls = 0

        async def runner():
            nonlocal calls
            calls += 1
            return calls

        ops = OperationDedupCache(window=10.0, clock=clock)
        await ops.run("ls", {}, runner)
        clock.advance(11.0)
        result, reused = await ops.run("ls", {}, runner)
        assert result == 2
        assert not reused

    async def test_failures_not_cached(self) -> None:
        async def failing():
            raise RuntimeError("boom")

        async def working():
            return "ok"

        ops = OperationDedupCache(clock=FakeClock())
        with pytest.raises(RuntimeError):
            await ops.run("grep", {"pattern": "x"}, failing)
        assert ops.lookup("grep", {"pattern": "x"}) is None
        assert await ops.run("grep", {"pattern": "x"}, working) == ("ok", False)

    def test_key_distinguishes_kind(self) -> None:
        assert OperationDedupCache.key("glob", {"p": 1}) != OperationDedupCache.key("grep", {"p": 1})

"""Bounded in-memory caches."""

from lethe.cache.files import FileContentCache
from lethe.cache.lru import CacheStats, LRUCache, TTLCache, make_cache_key
from lethe.cache.operations import OperationDedupCache

__all__ = [
    "CacheStats",
    "FileContentCache",
    "LRUCache",
    "OperationDedupCache",
    "TTLCache",
    "make_cache_key",
]

"""Content addressing of prunable units."""

from lethe.hashing.digest import part_hash, stable_stringify, tool_signature
from lethe.hashing.registry import HashEntry, HashRegistry, normalize_type
from lethe.hashing.tags import HashTag, extract_tags, render_tag, strip_tags

__all__ = [
    "HashEntry",
    "HashRegistry",
    "HashTag",
    "extract_tags",
    "normalize_type",
    "part_hash",
    "render_tag",
    "stable_stringify",
    "strip_tags",
    "tool_signature",
]

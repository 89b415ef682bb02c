"""Deterministic digests for content units and tool-call signatures."""

from __future__ import annotations

import hashlib
import json
from typing import Any

PART_HASH_LENGTH = 6


def stable_stringify(value: Any) -> str:
    """Serialize ``value`` as compact JSON with sorted keys at every depth."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def normalize_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    """Drop top-level ``None`` values so absent and null parameters compare equal."""
    if params is None:
        return None
    return {key: value for key, value in params.items() if value is not None}


def part_hash(content: str) -> str:
    """Return the first six hex characters of the SHA-256 digest of ``content``."""
    return hashlib.sha256(content.encode()).hexdigest()[:PART_HASH_LENGTH]


def tool_signature(tool: str, params: dict[str, Any] | None) -> str:
    """
    Return a signature identifying calls with the same tool and parameters.

    Example::

        a = tool_signature("read", {"filePath": "a.py", "offset": None})
        b = tool_signature("read", {"filePath": "a.py"})
        assert a == b
    """
    normalized = normalize_params(params)
    if not normalized:
        return tool
    digest = hashlib.sha256(stable_stringify(normalized).encode()).hexdigest()[:16]
    return f"{tool}::{digest}"

"""Approximate token counting for savings accounting and context reports."""

from __future__ import annotations

import hashlib
import math
from typing import Any

import structlog

from lethe.cache.lru import LRUCache
from lethe.models.message import MessageWithParts, ReasoningPart, TextPart, ToolPart

_logger = structlog.get_logger("lethe.tokens")


class TokenEstimator:
    """
    Token counting with caching and an optional tiktoken encoding.

    All savings accounting uses the character heuristic
    ``ceil(len(text) / 4)`` so that stats are stable across machines.
    When ``encoding`` is set (``cl100k_base`` or ``o200k_base``),
    :meth:`estimate_context` uses tiktoken instead and falls back to the
    heuristic if the encoder cannot be loaded.

    Caching:
    - Encoder objects are cached by encoding name (one load per process).
    - Token counts are cached by a caller-supplied key via ``estimate_cached()``,
      in an LRU bounded to ``cache_size`` keys.
    """

    def __init__(self, encoding: str | None = None, cache_size: int = 4_096) -> None:
        self.encoding = encoding
        self._encoder_cache: dict[str, Any] = {}
        self._count_cache: LRUCache[int] = LRUCache(max_size=cache_size)
        self._force_heuristic: bool = False
        """Set to True in tests to skip tiktoken import."""

    def estimate(self, text: str | None) -> int:
        """
        Estimate the token count for a string with the character heuristic.

        Returns:
            ``ceil(len(text) / 4)``; 0 for empty text.
        """
        if not text:
            return 0
        return math.ceil(len(text) / 4)

    def estimate_cached(self, text: str, cache_key: str | None = None) -> int:
        """
        Estimate with caching, keyed by ``cache_key`` (content hash by default).

        Use for immutable content, such as tool outputs, which is estimated on
        every update.
        """
        key = cache_key or self.content_hash(text)
        cached = self._count_cache.get(key)
        if cached is not None:
            return cached
        count = self.estimate(text)
        self._count_cache.set(key, count)
        return count

    def estimate_exact(self, text: str) -> int:
        """Estimate with the configured tiktoken encoding when available."""
        if not text:
            return 0
        if self._force_heuristic or self.encoding is None:
            return self.estimate(text)
        try:
            return self._tiktoken_estimate(text, self.encoding)
        except Exception as exc:
            _logger.warning("tiktoken_unavailable", encoding=self.encoding, error=str(exc))
            self._force_heuristic = True
            return self.estimate(text)

    def estimate_context(self, messages: list[MessageWithParts]) -> int:
        """
        Estimate the visible size of a conversation.

        Counts text, reasoning and the result text of completed or failed
        tool calls. Other part types contribute nothing.
        """
        total = 0
        for msg in messages:
            for part in msg.parts:
                if isinstance(part, TextPart | ReasoningPart):
                    total += self.estimate_exact(part.text)
                elif isinstance(part, ToolPart):
                    total += self.estimate_exact(part.result_text())
        return total

    def _tiktoken_estimate(self, text: str, encoding_name: str) -> int:
        """Encode with tiktoken, caching the encoder object."""
        if encoding_name not in self._encoder_cache:
            import tiktoken

            self._encoder_cache[encoding_name] = tiktoken.get_encoding(encoding_name)
        encoder = self._encoder_cache[encoding_name]
        return len(encoder.encode(text))

    @staticmethod
    def content_hash(text: str) -> str:
        """Return a stable SHA-256 hex digest for use as a cache key."""
        return hashlib.sha256(text.encode()).hexdigest()

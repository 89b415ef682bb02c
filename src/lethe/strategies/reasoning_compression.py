"""Compress old reasoning blocks to their opening and key lines."""

from __future__ import annotations

from lethe.models.config import LetheConfig
from lethe.models.message import ReasoningPart
from lethe.state.turns import message_turns
from lethe.strategies.base import RewriteEditor, RewriteStrategy, StrategyContext
from lethe.tokens.estimator import TokenEstimator

COMPRESSION_MARKER = "[Thinking compressed to save context - key points preserved above]"

KEY_PHRASES: tuple[str, ...] = (
    "conclusion",
    "therefore",
    "the answer",
    "in summary",
    "key point",
    "important",
    "decision",
    "approach",
    "solution",
    "result",
)

MIN_LINES = 10
HEAD_SCAN_LINES = 20
TRAILING_LINES = 5


def compress_reasoning(text: str, max_tokens: int, estimator: TokenEstimator) -> str:
    """
    Reduce reasoning to a head summary plus key lines.

    - head: leading lines (from the first 20) within 30% of ``max_tokens``;
    - key lines: scanning backward, lines containing a key phrase or among
      the last five, within 50% of ``max_tokens``.

    The result always ends with :data:`COMPRESSION_MARKER`.
    """
    lines = text.split("\n")
    if len(lines) <= MIN_LINES:
        return text

    head: list[str] = []
    used = 0
    head_budget = int(max_tokens * 0.3)
    for line in lines[:HEAD_SCAN_LINES]:
        cost = estimator.estimate(line + "\n")
        if used + cost > head_budget:
            break
        head.append(line)
        used += cost

    key: list[str] = []
    used = 0
    key_budget = int(max_tokens * 0.5)
    for i in range(len(lines) - 1, -1, -1):
        lowered = lines[i].lower()
        if i < len(lines) - TRAILING_LINES and not any(p in lowered for p in KEY_PHRASES):
            continue
        cost = estimator.estimate(lines[i] + "\n")
        if used + cost > key_budget:
            break
        key.insert(0, lines[i])
        used += cost

    removed = len(lines) - len(head) - len(key)
    marker = f"\n\n[... {removed} lines of reasoning compressed ...]\n\n"
    return "\n".join(head) + marker + "\n".join(key) + "\n" + COMPRESSION_MARKER


class ReasoningCompression(RewriteStrategy):
    """
    Rewrite reasoning parts of assistant messages that are at least
    ``min_turns_old`` turns old and larger than ``max_tokens``.

    Compressed blocks are never deleted and never compressed twice.
    """

    name = "reasoning_compression"

    def enabled(self, config: LetheConfig) -> bool:
        return config.reasoning_compression.enabled

    def transform(self, ctx: StrategyContext, editor: RewriteEditor) -> None:
        cfg = ctx.config.reasoning_compression
        turns = message_turns(ctx.messages, ctx.state.last_compaction)
        for msg in ctx.live():
            if msg.role != "assistant":
                continue
            if ctx.state.current_turn - turns.get(msg.id, 0) < cfg.min_turns_old:
                continue
            for i, part in enumerate(msg.parts):
                if not isinstance(part, ReasoningPart) or not part.text:
                    continue
                address = msg.part_id(i)
                if ctx.state.is_pruned("reasoning", address) or COMPRESSION_MARKER in part.text:
                    continue
                if ctx.estimator.estimate(part.text) <= cfg.max_tokens:
                    continue
                compressed = compress_reasoning(part.text, cfg.max_tokens, ctx.estimator)
                editor.rewrite(address, part, compressed)

"""Head/tail truncation of large tool outputs, rewritten in place."""

from __future__ import annotations

from lethe.models.config import LetheConfig, TruncationConfig
from lethe.models.message import ToolPart
from lethe.strategies.base import RewriteEditor, RewriteStrategy, StrategyContext
from lethe.tokens.estimator import TokenEstimator

TRUNCATED_TAG = "lines truncated to save context"
MIN_LINES = 20


def truncation_marker(lines_removed: int) -> str:
    return f"\n\n[... {lines_removed} {TRUNCATED_TAG} ...]\n\n"


def truncate_text(text: str, cfg: TruncationConfig, estimator: TokenEstimator) -> str:
    """
    Keep the first and last lines of ``text`` within the token budget.

    The budget is ``max_tokens`` minus the marker, split by ``head_ratio``
    and ``tail_ratio``. Texts of at most 20 lines, or whose head and tail
    would meet, are returned unchanged.
    """
    lines = text.split("\n")
    if len(lines) <= MIN_LINES:
        return text

    budget = cfg.max_tokens - estimator.estimate(truncation_marker(len(lines)))
    head_budget = int(budget * cfg.head_ratio)
    tail_budget = int(budget * cfg.tail_ratio)

    head_end = 0
    used = 0
    for line in lines:
        cost = estimator.estimate(line + "\n")
        if used + cost > head_budget:
            break
        used += cost
        head_end += 1

    tail_start = len(lines)
    used = 0
    for line in reversed(lines):
        cost = estimator.estimate(line + "\n")
        if used + cost > tail_budget:
            break
        used += cost
        tail_start -= 1

    if head_end >= tail_start:
        return text
    marker = truncation_marker(tail_start - head_end)
    return "\n".join(lines[:head_end]) + marker + "\n".join(lines[tail_start:])


class Truncation(RewriteStrategy):
    """
    Shorten old, large outputs of the target tools.

    Completed outputs above ``max_tokens`` keep their head and tail. Failed
    calls keep only the first line of their error when ``error_first_line``
    is set. Only calls at least ``min_turns_old`` turns old are touched;
    pruned calls are left alone.
    """

    name = "truncation"

    def enabled(self, config: LetheConfig) -> bool:
        return config.truncation.enabled

    def transform(self, ctx: StrategyContext, editor: RewriteEditor) -> None:
        cfg = ctx.config.truncation
        for msg in ctx.live():
            for part in msg.parts:
                if not isinstance(part, ToolPart) or not part.tool_call_id:
                    continue
                if part.tool_name not in cfg.target_tools:
                    continue
                if ctx.state.is_pruned("tool", part.tool_call_id):
                    continue
                entry = ctx.state.tool_parameters.get(part.tool_call_id)
                if entry is not None and ctx.state.current_turn - entry.turn < cfg.min_turns_old:
                    continue
                if part.state == "completed":
                    self._truncate_output(ctx, editor, part)
                elif part.state == "error" and cfg.error_first_line:
                    self._first_line(editor, part)

    @staticmethod
    def _truncate_output(ctx: StrategyContext, editor: RewriteEditor, part: ToolPart) -> None:
        output = part.output
        if not output or TRUNCATED_TAG in output:
            return
        if ctx.estimator.estimate(output) <= ctx.config.truncation.max_tokens:
            return
        truncated = truncate_text(output, ctx.config.truncation, ctx.estimator)
        editor.rewrite(part.tool_call_id, part, truncated)

    @staticmethod
    def _first_line(editor: RewriteEditor, part: ToolPart) -> None:
        error = part.error_message
        if not error or "\n" not in error.strip():
            return
        editor.rewrite(part.tool_call_id, part, error.strip().split("\n", 1)[0])

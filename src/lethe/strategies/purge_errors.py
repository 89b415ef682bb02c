"""Fully prune failed tool calls once they are old enough."""

from __future__ import annotations

from lethe.models.config import LetheConfig
from lethe.strategies.base import OmissionEditor, OmissionStrategy, StrategyContext


class PurgeErrors(OmissionStrategy):
    """Errored calls at least ``purge_errors.turns`` turns old are pruned, no replacement."""

    name = "purge_errors"

    def enabled(self, config: LetheConfig) -> bool:
        return config.purge_errors.enabled

    def select(self, ctx: StrategyContext, editor: OmissionEditor) -> None:
        cfg = ctx.config.purge_errors
        for call_id in ctx.tool_ids():
            entry = ctx.state.tool_parameters.get(call_id)
            if entry is None or entry.status != "error":
                continue
            if ctx.state.is_pruned("tool", call_id):
                continue
            if ctx.is_protected_call(call_id, cfg.protected_tools):
                continue
            if ctx.state.current_turn - entry.turn >= cfg.turns:
                editor.mark_omitted("tool", call_id)

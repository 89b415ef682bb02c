"""One file, one view: prune writes made stale by a later operation on the same path."""

from __future__ import annotations

from lethe.models.config import LetheConfig
from lethe.protection import file_path_from_parameters
from lethe.strategies.base import OmissionEditor, OmissionStrategy, StrategyContext


class SupersedeWrites(OmissionStrategy):
    """
    A write to path P followed later by a read or write of P is pruned.

    The most recent operation on a path is never pruned by this rule, and
    protected paths are skipped entirely. Observed call ids are recorded in
    ``cursors.files`` per path.
    """

    name = "supersede_writes"

    def enabled(self, config: LetheConfig) -> bool:
        return config.supersede_writes.enabled

    def select(self, ctx: StrategyContext, editor: OmissionEditor) -> None:
        cfg = ctx.config.supersede_writes
        operations: dict[str, list[tuple[str, bool]]] = {}
        for call_id in ctx.tool_ids():
            entry = ctx.state.tool_parameters.get(call_id)
            if entry is None:
                continue
            is_write = entry.tool in cfg.write_tools
            if not is_write and entry.tool not in cfg.read_tools:
                continue
            path = file_path_from_parameters(entry.parameters)
            if path is None or ctx.is_protected_call(call_id):
                continue
            operations.setdefault(path, []).append((call_id, is_write))

        files = ctx.state.cursors.files
        for path, ops in operations.items():
            files[path] = [call_id for call_id, _ in ops]
            for call_id, is_write in ops[:-1]:
                if is_write and not ctx.state.is_pruned("tool", call_id):
                    editor.mark_omitted("tool", call_id)

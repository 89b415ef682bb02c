"""Prune repeated tool calls, keeping the most recent of each signature."""

from __future__ import annotations

from dataclasses import dataclass

from lethe.hashing.digest import tool_signature
from lethe.models.config import LetheConfig
from lethe.strategies.base import OmissionEditor, OmissionStrategy, StrategyContext


@dataclass(frozen=True)
class ReadRange:
    call_id: str
    offset: int
    limit: int | None
    """None reads to the end of the file."""
    order: int

    def within(self, other: ReadRange) -> bool:
        """True when every line this read covers is covered by ``other``."""
        if other.limit is None:
            return self.offset >= other.offset
        if self.limit is None:
            return False
        return self.offset >= other.offset and self.offset + self.limit <= other.offset + other.limit


class Deduplication(OmissionStrategy):
    """
    Two phases over unpruned, unprotected calls in conversation order:

    1. Calls sharing a ``(tool, normalized params)`` signature: all but the
       last are pruned.
    2. Among the remaining ``read`` calls of one file, a read whose line
       range is contained in a later read's range is pruned.
    """

    name = "deduplication"

    def enabled(self, config: LetheConfig) -> bool:
        return config.deduplication.enabled

    def select(self, ctx: StrategyContext, editor: OmissionEditor) -> None:
        extra = ctx.config.deduplication.protected_tools
        candidates = [
            call_id
            for call_id in ctx.tool_ids()
            if call_id in ctx.state.tool_parameters
            and not ctx.state.is_pruned("tool", call_id)
            and not ctx.is_protected_call(call_id, extra)
        ]

        groups: dict[str, list[str]] = {}
        for call_id in candidates:
            entry = ctx.state.tool_parameters[call_id]
            groups.setdefault(tool_signature(entry.tool, entry.parameters), []).append(call_id)

        pruned: set[str] = set()
        for ids in groups.values():
            for call_id in ids[:-1]:
                if editor.mark_omitted("tool", call_id):
                    pruned.add(call_id)

        for call_id in self._overlapping_reads(ctx, [c for c in candidates if c not in pruned]):
            editor.mark_omitted("tool", call_id)

    @staticmethod
    def _overlapping_reads(ctx: StrategyContext, call_ids: list[str]) -> list[str]:
        reads: dict[str, list[ReadRange]] = {}
        for order, call_id in enumerate(call_ids):
            entry = ctx.state.tool_parameters[call_id]
            if entry.tool not in ctx.config.supersede_writes.read_tools:
                continue
            path = entry.parameters.get("filePath")
            if not isinstance(path, str) or not path:
                continue
            offset = entry.parameters.get("offset")
            limit = entry.parameters.get("limit")
            reads.setdefault(path, []).append(
                ReadRange(
                    call_id=call_id,
                    offset=offset if isinstance(offset, int) else 0,
                    limit=limit if isinstance(limit, int) else None,
                    order=order,
                )
            )

        covered: list[str] = []
        for ranges in reads.values():
            for older in ranges:
                if any(newer.order > older.order and older.within(newer) for newer in ranges):
                    covered.append(older.call_id)
        return covered

"""
Shared building blocks for automatic strategies.

Every strategy declares one :class:`StrategyAction`:

- ``OMIT`` strategies receive an :class:`OmissionEditor` and may only call
  ``mark_omitted``; the unit disappears from the view, its text untouched.
- ``REWRITE`` strategies receive a :class:`RewriteEditor` and may only call
  ``rewrite``; the unit stays visible with new text and is never added to
  a prune set.

Editors stage changes. The pipeline commits them only when the strategy
returned normally, so a strategy that raises leaves no trace.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar

import structlog

from lethe.models.config import LetheConfig
from lethe.models.message import MessageWithParts, ReasoningPart, TextPart, ToolPart
from lethe.models.results import StrategyResult
from lethe.models.state import SessionState, UnitKind
from lethe.protection import file_path_from_parameters, is_protected_path, is_protected_tool
from lethe.state.turns import live_messages
from lethe.tokens.estimator import TokenEstimator

_logger = structlog.get_logger("lethe.strategies")


class StrategyAction(StrEnum):
    OMIT = "omit"
    REWRITE = "rewrite"


# ── Unit index ─────────────────────────────────────────────────────────────────


@dataclass
class UnitIndex:
    """Lookup of addressable parts in one message list, in conversation order."""

    tool_calls: dict[str, ToolPart] = field(default_factory=dict)
    parts: dict[str, TextPart | ReasoningPart] = field(default_factory=dict)
    """``messageId:partIndex`` of text and reasoning parts."""
    owners: dict[str, MessageWithParts] = field(default_factory=dict)
    """Owning message for every call id and part address above."""

    @classmethod
    def build(cls, messages: Sequence[MessageWithParts]) -> UnitIndex:
        index = cls()
        for msg in messages:
            for i, part in enumerate(msg.parts):
                if isinstance(part, ToolPart) and part.tool_call_id:
                    index.tool_calls[part.tool_call_id] = part
                    index.owners[part.tool_call_id] = msg
                elif isinstance(part, TextPart | ReasoningPart):
                    address = msg.part_id(i)
                    index.parts[address] = part
                    index.owners[address] = msg
        return index

    def text_of(self, kind: UnitKind, unit_id: str) -> str:
        """The content a unit currently contributes to the context."""
        if kind == "tool":
            part = self.tool_calls.get(unit_id)
            return part.result_text() if part is not None else ""
        if kind == "segment":
            address, _, span = unit_id.rpartition(":")
            target = self.parts.get(address)
            start, _, end = span.partition("-")
            if target is None or not start.isdigit() or not end.isdigit():
                return ""
            return target.text[int(start) : int(end)]
        part = self.parts.get(unit_id)
        return part.text if part is not None else ""


@dataclass
class StrategyContext:
    """Everything a strategy may read during one update."""

    state: SessionState
    config: LetheConfig
    messages: Sequence[MessageWithParts]
    estimator: TokenEstimator
    index: UnitIndex

    @classmethod
    def build(
        cls,
        state: SessionState,
        config: LetheConfig,
        messages: Sequence[MessageWithParts],
        estimator: TokenEstimator,
    ) -> StrategyContext:
        return cls(state, config, messages, estimator, UnitIndex.build(messages))

    def live(self) -> Iterator[MessageWithParts]:
        return live_messages(self.messages, self.state.last_compaction)

    def tool_ids(self) -> list[str]:
        """Call ids of live tool parts in conversation order."""
        return [
            part.tool_call_id
            for msg in self.live()
            for part in msg.parts
            if isinstance(part, ToolPart) and part.tool_call_id
        ]

    def is_protected_call(self, call_id: str, extra_tools: Sequence[str] = ()) -> bool:
        """True when a call's tool or file path is protected (globally or by ``extra_tools``)."""
        entry = self.state.tool_parameters.get(call_id)
        if entry is None:
            return False
        if is_protected_tool(entry.tool, [*self.config.protected_tools, *extra_tools]):
            return True
        path = file_path_from_parameters(entry.parameters)
        return is_protected_path(path, self.config.protected_file_patterns)


# ── Editors ────────────────────────────────────────────────────────────────────


class OmissionEditor:
    """Stages prune-set additions for one strategy run."""

    def __init__(self, ctx: StrategyContext, strategy: str) -> None:
        self._ctx = ctx
        self._strategy = strategy
        self._staged: dict[tuple[UnitKind, str], int] = {}

    def mark_omitted(self, kind: UnitKind, unit_id: str) -> bool:
        """
        Stage ``unit_id`` for omission.

        Returns False (and stages nothing) when the unit is already pruned,
        already staged, or is a call of a globally protected tool.
        """
        state = self._ctx.state
        if state.is_pruned(kind, unit_id) or (kind, unit_id) in self._staged:
            return False
        if kind == "tool":
            entry = state.tool_parameters.get(unit_id)
            tool = entry.tool if entry is not None else None
            part = self._ctx.index.tool_calls.get(unit_id)
            if part is not None:
                tool = part.tool_name
            if tool is not None and is_protected_tool(tool, self._ctx.config.protected_tools):
                _logger.debug("protected_omission_refused", strategy=self._strategy, unit_id=unit_id)
                return False
        tokens = self._ctx.estimator.estimate(self._ctx.index.text_of(kind, unit_id))
        self._staged[(kind, unit_id)] = tokens
        return True

    @property
    def staged(self) -> list[str]:
        return [unit_id for _, unit_id in self._staged]

    def commit(self) -> StrategyResult:
        state = self._ctx.state
        affected: list[str] = []
        tokens = 0
        for (kind, unit_id), unit_tokens in self._staged.items():
            if state.prune.add(kind, unit_id):
                affected.append(unit_id)
                tokens += unit_tokens
        state.stats.record(self._strategy, len(affected), tokens)
        return StrategyResult(
            strategy=self._strategy,
            action=StrategyAction.OMIT,
            affected_ids=affected,
            tokens_saved=tokens,
        )


@dataclass
class _Rewrite:
    part: TextPart | ReasoningPart | ToolPart
    text: str
    tokens_saved: int


class RewriteEditor:
    """Stages in-place text rewrites for one strategy run."""

    def __init__(self, ctx: StrategyContext, strategy: str) -> None:
        self._ctx = ctx
        self._strategy = strategy
        self._staged: dict[str, _Rewrite] = {}

    def rewrite(self, unit_id: str, part: TextPart | ReasoningPart | ToolPart, text: str) -> bool:
        """
        Stage replacing the visible text of ``part`` with ``text``.

        For tool parts the output is replaced, or the error message when the
        call failed. Returns False when nothing would change.
        """
        current = part.result_text() if isinstance(part, ToolPart) else part.text
        if text == current or unit_id in self._staged:
            return False
        estimate = self._ctx.estimator.estimate
        saved = max(0, estimate(current) - estimate(text))
        self._staged[unit_id] = _Rewrite(part=part, text=text, tokens_saved=saved)
        return True

    def commit(self) -> StrategyResult:
        state = self._ctx.state
        affected: list[str] = []
        tokens = 0
        for unit_id, change in self._staged.items():
            part = change.part
            if isinstance(part, ToolPart):
                if part.state == "error":
                    part.error_message = change.text
                else:
                    part.output = change.text
            else:
                part.text = change.text
            # The host re-sends original text each update; book each unit once.
            if unit_id not in state.rewritten:
                state.rewritten[unit_id] = change.tokens_saved
                affected.append(unit_id)
                tokens += change.tokens_saved
        state.stats.record(self._strategy, len(affected), tokens, omitted=False)
        return StrategyResult(
            strategy=self._strategy,
            action=StrategyAction.REWRITE,
            affected_ids=affected,
            tokens_saved=tokens,
        )


Editor = OmissionEditor | RewriteEditor


# ── Strategy ───────────────────────────────────────────────────────────────────


class Strategy(ABC):
    """An automatic transform run once per update."""

    name: ClassVar[str]
    action: ClassVar[StrategyAction]

    def enabled(self, config: LetheConfig) -> bool:
        return True

    def editor(self, ctx: StrategyContext) -> Editor:
        if self.action is StrategyAction.OMIT:
            return OmissionEditor(ctx, self.name)
        return RewriteEditor(ctx, self.name)

    @abstractmethod
    def apply(self, ctx: StrategyContext, editor: Editor) -> None:
        """Inspect ``ctx`` and stage changes on ``editor``."""


class OmissionStrategy(Strategy):
    action: ClassVar[StrategyAction] = StrategyAction.OMIT

    def apply(self, ctx: StrategyContext, editor: Editor) -> None:
        if not isinstance(editor, OmissionEditor):
            raise TypeError(f"{self.name} stages omissions and needs an OmissionEditor")
        self.select(ctx, editor)

    @abstractmethod
    def select(self, ctx: StrategyContext, editor: OmissionEditor) -> None: ...


class RewriteStrategy(Strategy):
    action: ClassVar[StrategyAction] = StrategyAction.REWRITE

    def apply(self, ctx: StrategyContext, editor: Editor) -> None:
        if not isinstance(editor, RewriteEditor):
            raise TypeError(f"{self.name} stages rewrites and needs a RewriteEditor")
        self.transform(ctx, editor)

    @abstractmethod
    def transform(self, ctx: StrategyContext, editor: RewriteEditor) -> None: ...

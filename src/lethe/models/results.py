"""Result types returned by strategies, manual operations and the engine."""

from __future__ import annotations

from pydantic import BaseModel, Field

from lethe.models.message import MessageWithParts


class StrategyResult(BaseModel):
    """What a single automatic strategy did during one update."""

    strategy: str
    action: str
    """``"omit"`` or ``"rewrite"``."""
    affected_ids: list[str] = Field(default_factory=list)
    tokens_saved: int = 0

    @property
    def count(self) -> int:
        return len(self.affected_ids)


class PipelineResult(BaseModel):
    """The outcome of running every automatic strategy once."""

    results: list[StrategyResult] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    """Names of strategies that raised; their effects were discarded."""

    @property
    def tokens_saved(self) -> int:
        return sum(r.tokens_saved for r in self.results)

    def for_strategy(self, name: str) -> StrategyResult | None:
        for result in self.results:
            if result.strategy == name:
                return result
        return None


class OperationResult(BaseModel):
    """The result of a manual discard or distill."""

    action: str
    hashes: list[str] = Field(default_factory=list)
    unit_ids: list[str] = Field(default_factory=list)
    tokens_saved: int = 0
    reason: str | None = None

    def summary(self) -> str:
        noun = "item" if len(self.unit_ids) == 1 else "items"
        verb = "Distilled" if self.action == "distill" else "Discarded"
        suffix = f" ({self.reason})" if self.reason else ""
        return f"{verb} {len(self.unit_ids)} {noun}{suffix}, saved ~{self.tokens_saved} tokens"


class RestoreResult(BaseModel):
    """Per-hash outcome of a restore request."""

    restored: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    not_pruned: list[str] = Field(default_factory=list)

    def summary(self) -> str:
        lines = [f"Restored {len(self.restored)} item(s)"]
        if self.not_found:
            lines.append(f"Not found: {', '.join(self.not_found)}")
        if self.not_pruned:
            lines.append(f"Not pruned: {', '.join(self.not_pruned)}")
        return "\n".join(lines)


class UpdateResult(BaseModel):
    """The result of processing one conversation update."""

    session_id: str
    messages: list[MessageWithParts]
    """The rendered view: prunes applied, addressable units tagged."""
    pipeline: PipelineResult = Field(default_factory=PipelineResult)
    current_turn: int = 0
    compaction_detected: bool = False
    skipped: bool = False
    """True for sub-agent sessions or when the engine is disabled."""
    reflection_due: bool = False
    """True when automata mode is active and the host should prompt a strategic reflection."""


class RankedCandidate(BaseModel):
    """An unpruned tool output ranked by estimated size."""

    call_id: str
    hash: str
    tool_name: str
    estimated_tokens: int
    target: str | None = None


class AggregatedStats(BaseModel):
    """Savings summed across every persisted session."""

    total_tokens: int = 0
    total_tools: int = 0
    session_count: int = 0

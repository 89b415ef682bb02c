"""Per-session state: prune sets, stats, cursors and the tool-parameter cache."""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from lethe.hashing.registry import HashRegistry

UnitKind = Literal["tool", "message", "reasoning", "segment"]

UNIT_KINDS: tuple[UnitKind, ...] = ("tool", "message", "reasoning", "segment")

STRATEGY_KEYS: tuple[str, ...] = (
    "deduplication",
    "supersede_writes",
    "supersede_queries",
    "purge_errors",
    "manual_discard",
    "distillation",
    "truncation",
    "reasoning_compression",
)

# ── Tool cache ─────────────────────────────────────────────────────────────────


class ToolParameterEntry(BaseModel):
    """Cached view of one tool call, keyed by call id in ``SessionState.tool_parameters``."""

    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "running", "completed", "error"] = "pending"
    error: str | None = None
    turn: int = 0


# ── Prune sets ─────────────────────────────────────────────────────────────────


class PruneSets(BaseModel):
    """
    Ids of units omitted from the agent's view, one list per unit kind.

    Lists keep insertion order for stable persistence; membership is
    idempotent, so adding an id twice is a no-op.
    """

    tool_ids: list[str] = Field(default_factory=list)
    message_part_ids: list[str] = Field(default_factory=list)
    """``messageId:partIndex`` addresses of assistant text parts."""
    reasoning_part_ids: list[str] = Field(default_factory=list)
    segment_ids: list[str] = Field(default_factory=list)
    """``messageId:partIndex:start-end`` addresses of spans inside text parts."""

    def ids(self, kind: UnitKind) -> list[str]:
        return getattr(self, _PRUNE_FIELDS[kind])

    def contains(self, kind: UnitKind, unit_id: str) -> bool:
        return unit_id in self.ids(kind)

    def add(self, kind: UnitKind, unit_id: str) -> bool:
        """Add ``unit_id``. Returns False when it was already present."""
        ids = self.ids(kind)
        if unit_id in ids:
            return False
        ids.append(unit_id)
        return True

    def remove(self, kind: UnitKind, unit_id: str) -> bool:
        """Remove ``unit_id``. Returns False when it was not present."""
        ids = self.ids(kind)
        if unit_id not in ids:
            return False
        ids.remove(unit_id)
        return True

    def total(self) -> int:
        return sum(len(self.ids(kind)) for kind in UNIT_KINDS)


_PRUNE_FIELDS: dict[str, str] = {
    "tool": "tool_ids",
    "message": "message_part_ids",
    "reasoning": "reasoning_part_ids",
    "segment": "segment_ids",
}


# ── Stats ──────────────────────────────────────────────────────────────────────


class StrategyStats(BaseModel):
    """Units affected and estimated tokens saved by one strategy."""

    count: int = 0
    tokens: int = 0


class SessionStats(BaseModel):
    """Monotonically non-decreasing savings counters for a session."""

    total_prune_tokens: int = 0
    total_prune_messages: int = 0
    strategies: dict[str, StrategyStats] = Field(
        default_factory=lambda: {key: StrategyStats() for key in STRATEGY_KEYS}
    )

    def strategy(self, key: str) -> StrategyStats:
        return self.strategies.setdefault(key, StrategyStats())

    def record(self, key: str, count: int, tokens: int, *, omitted: bool = True) -> None:
        """
        Book ``count`` units and ``tokens`` saved against ``key``.

        Omissions also feed the session totals; in-place rewrites only feed
        their own strategy counter.
        """
        if count <= 0 and tokens <= 0:
            return
        tokens = max(0, tokens)
        entry = self.strategy(key)
        entry.count += count
        entry.tokens += tokens
        if omitted:
            self.total_prune_messages += count
            self.total_prune_tokens += tokens


# ── Cursors ────────────────────────────────────────────────────────────────────


class TodoCursor(BaseModel):
    last_write_call_id: str | None = None
    last_read_call_id: str | None = None
    last_turn: int = 0


class AutomataCursor(BaseModel):
    """Turn counters for hosts running an autonomous reflection loop."""

    enabled: bool = False
    last_turn: int = 0
    last_reflection_turn: int = 0


class Cursors(BaseModel):
    """
    Per-strategy bookkeeping for supersede detection.

    Each mapping goes from a normalized key (file path, query key, URL key,
    tool signature) to the call ids observed for it in conversation order.
    """

    files: dict[str, list[str]] = Field(default_factory=dict)
    queries: dict[str, list[str]] = Field(default_factory=dict)
    urls: dict[str, list[str]] = Field(default_factory=dict)
    retries: dict[str, list[str]] = Field(default_factory=dict)
    todo: TodoCursor = Field(default_factory=TodoCursor)
    automata: AutomataCursor = Field(default_factory=AutomataCursor)

    def forget_call(self, call_id: str) -> None:
        """Drop every reference to ``call_id`` (used when the tool cache evicts it)."""
        for mapping in (self.files, self.queries, self.urls, self.retries):
            for key in list(mapping):
                ids = mapping[key]
                if call_id in ids:
                    ids.remove(call_id)
                    if not ids:
                        del mapping[key]
        if self.todo.last_write_call_id == call_id:
            self.todo.last_write_call_id = None
        if self.todo.last_read_call_id == call_id:
            self.todo.last_read_call_id = None


# ── History / todos ────────────────────────────────────────────────────────────


class DiscardRecord(BaseModel):
    """One manual prune, as kept in the bounded discard history."""

    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    hashes: list[str]
    tokens_saved: int
    reason: str


class TodoItem(BaseModel):
    """One entry of the agent's todo list, as written by the ``todowrite`` tool."""

    model_config = ConfigDict(extra="ignore")

    id: str
    content: str = ""
    status: str = "pending"
    priority: str | None = None
    in_progress_since: int | None = None


# ── Aggregate root ─────────────────────────────────────────────────────────────


class SessionState(BaseModel):
    """
    Single source of truth for one active session.

    Created empty, replaced wholesale when the active session id changes,
    mutated in place by strategies and manual operations.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str | None = None
    is_sub_agent: bool = False
    prune: PruneSets = Field(default_factory=PruneSets)
    stats: SessionStats = Field(default_factory=SessionStats)
    tool_parameters: dict[str, ToolParameterEntry] = Field(default_factory=dict)
    hashes: HashRegistry = Field(default_factory=HashRegistry)
    cursors: Cursors = Field(default_factory=Cursors)
    discard_history: list[DiscardRecord] = Field(default_factory=list)
    todos: list[TodoItem] = Field(default_factory=list)
    distillations: dict[str, str] = Field(default_factory=dict)
    """Replacement text keyed by pruned unit id (distilled units only)."""
    rewritten: dict[str, int] = Field(default_factory=dict)
    """Tokens saved per unit id already rewritten in place; each unit is booked once."""
    current_turn: int = 0
    last_compaction: int = 0
    """Creation timestamp (ms) of the newest compaction summary seen."""

    def is_pruned(self, kind: UnitKind, unit_id: str) -> bool:
        return self.prune.contains(kind, unit_id)

    def append_discard(self, record: DiscardRecord, limit: int) -> None:
        """Append to the discard history, keeping only the newest ``limit`` entries."""
        self.discard_history.append(record)
        overflow = len(self.discard_history) - limit
        if overflow > 0:
            del self.discard_history[:overflow]

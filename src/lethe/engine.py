"""Lethe engine: the host-facing entry point."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog
from ulid import ULID

from lethe.cache.files import FileContentCache
from lethe.cache.operations import OperationDedupCache
from lethe.errors import MessageFetchTimeout
from lethe.events.bus import EventBus, LetheEvent
from lethe.events.payloads import StateSavedPayload, UnitsChangedPayload, UpdateAbandonedPayload
from lethe.hashing.assign import assign_hashes
from lethe.host import HostClient
from lethe.models.config import LetheConfig
from lethe.models.message import MessageWithParts, ToolPart
from lethe.models.results import (
    AggregatedStats,
    OperationResult,
    PipelineResult,
    RankedCandidate,
    RestoreResult,
    UpdateResult,
)
from lethe.models.state import SessionState
from lethe.operations.context import ContextAction, ContextOperation, Target
from lethe.operations.manual import DistillEntry, ManualOperations
from lethe.protection import file_path_from_parameters, is_protected_tool
from lethe.state.automata import sync_automata
from lethe.state.manager import SessionStateManager
from lethe.state.tool_cache import sync_tool_cache
from lethe.strategies.pipeline import StrategyPipeline
from lethe.store.persistence import StatePersistence
from lethe.tokens.estimator import TokenEstimator
from lethe.view import build_view

MIN_CANDIDATE_TOKENS = 100

_TARGET_KEYS = ("pattern", "command", "url", "query", "description")


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"upd"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


class ContextEngine:
    """
    Manage the context of one host agent: one active session at a time.

    The engine owns the session state, runs the automatic strategies on
    every conversation update, persists the result and renders the pruned
    view. Manual operations (``discard``, ``distill``, ``restore``,
    ``context``) act on the same state and are serialised with updates.

    Usage::

        engine = ContextEngine(host, LetheConfig())

        # On every host message update
        result = await engine.handle_update("ses_1")
        if result is not None:
            send_to_model(result.messages)

        # When the agent calls a context tool
        outcome = await engine.discard("ses_1", ["a1b2c3"], "completion")
        print(outcome.summary())
    """

    def __init__(
        self,
        host: HostClient,
        config: LetheConfig | None = None,
        *,
        persistence: StatePersistence | None = None,
        estimator: TokenEstimator | None = None,
        event_bus: EventBus | None = None,
        file_cache: FileContentCache | None = None,
        operation_cache: OperationDedupCache | None = None,
    ) -> None:
        self._host = host
        self._config = config or LetheConfig.default()
        cfg = self._config
        self._persistence = persistence or StatePersistence(cfg.store.storage_dir)
        self._estimator = estimator or TokenEstimator(cfg.estimator_encoding)
        self._event_bus = event_bus or EventBus()
        self._file_cache = file_cache or FileContentCache(
            max_entries=cfg.cache.file_max_entries, ttl=cfg.cache.file_ttl
        )
        self._operation_cache = operation_cache or OperationDedupCache(
            window=cfg.cache.operation_window, max_entries=cfg.cache.operation_max_entries
        )
        self._manager = SessionStateManager(host, self._persistence, self._event_bus)
        self._pipeline = StrategyPipeline(cfg, self._estimator, self._event_bus)
        self._manual = ManualOperations(cfg, self._estimator)
        self._context = ContextOperation(cfg, self._estimator, self._manual)
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger("lethe.engine")

    @property
    def state(self) -> SessionState:
        return self._manager.state

    @property
    def config(self) -> LetheConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    # ── Update loop ────────────────────────────────────────────────────────────

    async def handle_update(self, session_id: str) -> UpdateResult | None:
        """
        Fetch the session's messages from the host and process them.

        Returns:
            The update result, or None when the host did not answer within
            ``fetch_timeout``; the update is abandoned and state is untouched.
        """
        try:
            messages = await self._fetch(session_id)
        except MessageFetchTimeout as exc:
            self._logger.warning("update_abandoned", session_id=session_id, error=str(exc))
            payload: UpdateAbandonedPayload = {"session_id": session_id, "reason": "timeout"}
            self._event_bus.publish(LetheEvent.UPDATE_ABANDONED, dict(payload))
            return None
        return await self.process(session_id, messages)

    async def process(
        self, session_id: str, messages: Sequence[MessageWithParts]
    ) -> UpdateResult:
        """
        Run one update over ``messages``.

        Steps: activate the session (initializing or detecting compaction),
        sync the tool cache, assign hashes, run the strategies, persist and
        render the view. Sub-agent sessions and a disabled engine get the
        messages back unchanged.
        """
        update_id = make_id("upd")
        async with self._lock:
            same_session = self._manager.state.session_id == session_id
            watermark = self._manager.state.last_compaction
            state = await self._manager.ensure_session(session_id, messages)
            compacted = same_session and state.last_compaction > watermark

            if not self._config.enabled or state.is_sub_agent:
                self._logger.debug(
                    "update_skipped",
                    update_id=update_id,
                    session_id=session_id,
                    is_sub_agent=state.is_sub_agent,
                )
                return UpdateResult(
                    session_id=session_id,
                    messages=[m.model_copy(deep=True) for m in messages],
                    current_turn=state.current_turn,
                    compaction_detected=compacted,
                    skipped=True,
                )

            # Rewrite strategies edit parts in place; the host keeps its originals.
            working = [m.model_copy(deep=True) for m in messages]
            sync_tool_cache(state, working, self._config.cache.tool_cache_limit)
            assign_hashes(state, working, self._config)
            reflect = sync_automata(state, working, self._config.automata)
            pipeline: PipelineResult = self._pipeline.run(state, working)
            await self._save(state)
            view = build_view(working, state, self._config)

        self._logger.info(
            "update_processed",
            update_id=update_id,
            session_id=session_id,
            current_turn=state.current_turn,
            tokens_saved=pipeline.tokens_saved,
            failed=pipeline.failed,
        )
        return UpdateResult(
            session_id=session_id,
            messages=view,
            pipeline=pipeline,
            current_turn=state.current_turn,
            compaction_detected=compacted,
            reflection_due=reflect,
        )

    # ── Manual operations ──────────────────────────────────────────────────────

    async def discard(
        self, session_id: str, hashes: Sequence[str], reason: str = "noise"
    ) -> OperationResult:
        """
        Discard units by hash.

        Raises:
            ValidationError: Unknown, already pruned or protected hash, or a bad reason.
            MessageFetchTimeout: The host did not return messages in time.
        """
        messages = await self._fetch(session_id)
        async with self._lock:
            state = await self._manager.ensure_session(session_id, messages)
            result = self._manual.discard(state, messages, hashes, reason)
            await self._save(state)
        self._publish_units(
            LetheEvent.UNITS_DISCARDED, session_id, result.hashes, result.tokens_saved
        )
        return result

    async def distill(
        self, session_id: str, entries: Sequence[DistillEntry | tuple[str, str]]
    ) -> OperationResult:
        """
        Replace units with summaries. ``entries`` are ``(hash, summary)`` pairs.

        Raises:
            ValidationError: Unknown, already pruned or protected hash, or a blank summary.
            MessageFetchTimeout: The host did not return messages in time.
        """
        requests = [
            e if isinstance(e, DistillEntry) else DistillEntry(hash=e[0], replace_content=e[1])
            for e in entries
        ]
        messages = await self._fetch(session_id)
        async with self._lock:
            state = await self._manager.ensure_session(session_id, messages)
            result = self._manual.distill(state, messages, requests)
            await self._save(state)
        self._publish_units(
            LetheEvent.UNITS_DISTILLED, session_id, result.hashes, result.tokens_saved
        )
        return result

    async def restore(self, session_id: str, hashes: Sequence[str]) -> RestoreResult:
        """Restore pruned units by hash. Unknown and unpruned hashes are reported."""
        messages = await self._fetch(session_id)
        async with self._lock:
            state = await self._manager.ensure_session(session_id, messages)
            result = self._manual.restore(state, hashes)
            if result.restored:
                await self._save(state)
        self._publish_units(LetheEvent.UNITS_RESTORED, session_id, result.restored, 0)
        return result

    async def context(
        self,
        session_id: str,
        action: ContextAction,
        targets: Sequence[Target],
        reason: str = "noise",
    ) -> OperationResult | RestoreResult:
        """
        Unified entry point accepting hash, bulk and text-pattern targets.

        Raises:
            InvalidTargetError: A target is malformed or matches nothing.
            ValidationError: Raised by the underlying operation.
            MessageFetchTimeout: The host did not return messages in time.
        """
        messages = await self._fetch(session_id)
        async with self._lock:
            state = await self._manager.ensure_session(session_id, messages)
            result = self._context.run(state, messages, action, targets, reason=reason)
            await self._save(state)
        if isinstance(result, RestoreResult):
            self._publish_units(LetheEvent.UNITS_RESTORED, session_id, result.restored, 0)
        elif result.action == "distill":
            self._publish_units(
                LetheEvent.UNITS_DISTILLED, session_id, result.hashes, result.tokens_saved
            )
        else:
            self._publish_units(
                LetheEvent.UNITS_DISCARDED, session_id, result.hashes, result.tokens_saved
            )
        return result

    # ── Caches ─────────────────────────────────────────────────────────────────

    async def read_file(self, path: str) -> str:
        """Read a file through the content cache (mtime- and size-validated)."""
        return await self._file_cache.read(path)

    async def run_operation(
        self,
        kind: str,
        params: dict[str, Any] | None,
        runner: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, bool]:
        """
        Run ``runner`` unless an identical operation finished within the window.

        Returns:
            ``(result, reused)``.
        """
        return await self._operation_cache.run(kind, params, runner)

    # ── Reporting ──────────────────────────────────────────────────────────────

    def rank_candidates(
        self, messages: Sequence[MessageWithParts], limit: int = 10
    ) -> list[RankedCandidate]:
        """
        Rank unpruned, non-protected tool outputs of the active session by size.

        Only outputs of at least 100 estimated tokens are candidates.
        """
        state = self._manager.state
        ranked: list[RankedCandidate] = []
        for msg in messages:
            for part in msg.parts:
                if not isinstance(part, ToolPart):
                    continue
                if is_protected_tool(part.tool_name, self._config.protected_tools):
                    continue
                if state.is_pruned("tool", part.tool_call_id):
                    continue
                hash_value = state.hashes.hash_for("tool", part.tool_call_id)
                if hash_value is None:
                    continue
                tokens = self._estimator.estimate_cached(
                    part.result_text(), cache_key=f"{part.tool_call_id}:{part.state}"
                )
                if tokens < MIN_CANDIDATE_TOKENS:
                    continue
                ranked.append(
                    RankedCandidate(
                        call_id=part.tool_call_id,
                        hash=hash_value,
                        tool_name=part.tool_name,
                        estimated_tokens=tokens,
                        target=_candidate_target(part.input),
                    )
                )
        ranked.sort(key=lambda c: c.estimated_tokens, reverse=True)
        return ranked[:limit]

    def context_tokens(self, messages: Sequence[MessageWithParts]) -> int:
        """Estimated size of ``messages`` as the model would see them."""
        return self._estimator.estimate_context(list(messages))

    async def all_time_stats(self) -> AggregatedStats:
        """Savings summed across every persisted session."""
        return await self._persistence.load_all_stats()

    async def close(self) -> None:
        """Persist the active session, if any, and clear in-memory caches."""
        async with self._lock:
            if self._manager.state.session_id:
                await self._save(self._manager.state)
        self._file_cache.clear()
        self._operation_cache.clear()
        self._logger.info("engine_closed", session_id=self._manager.state.session_id)

    # ── Internals ──────────────────────────────────────────────────────────────

    async def _fetch(self, session_id: str) -> list[MessageWithParts]:
        timeout = self._config.fetch_timeout
        try:
            return await asyncio.wait_for(self._host.fetch_messages(session_id), timeout)
        except TimeoutError as exc:
            raise MessageFetchTimeout(session_id, timeout) from exc

    async def _save(self, state: SessionState) -> None:
        if not await self._persistence.save(state):
            return
        payload: StateSavedPayload = {
            "session_id": state.session_id or "",
            "total_prune_tokens": state.stats.total_prune_tokens,
        }
        self._event_bus.publish(LetheEvent.STATE_SAVED, dict(payload))

    def _publish_units(
        self, event: LetheEvent, session_id: str, hashes: list[str], tokens_saved: int
    ) -> None:
        payload: UnitsChangedPayload = {
            "session_id": session_id,
            "hashes": list(hashes),
            "tokens_saved": tokens_saved,
        }
        self._event_bus.publish(event, dict(payload))


def _candidate_target(params: dict[str, Any]) -> str | None:
    path = file_path_from_parameters(params)
    if path:
        return path
    for key in _TARGET_KEYS:
        value = params.get(key)
        if isinstance(value, str) and value:
            return value
    return None

"""Lifecycle of the active session's state: initialization, compaction, turns."""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum

import structlog

from lethe.events.bus import EventBus, LetheEvent
from lethe.events.payloads import CompactionDetectedPayload, SessionInitializedPayload
from lethe.host import HostClient
from lethe.models.message import MessageWithParts
from lethe.models.state import SessionState
from lethe.state.turns import count_turns, find_last_compaction
from lethe.store.persistence import StatePersistence

_logger = structlog.get_logger("lethe.state")


class SessionPhase(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"


class SessionStateManager:
    """
    Own the single :class:`SessionState` of the active session.

    Whenever the observed session id changes the state is replaced with a
    fresh one, sub-agent status is fetched from the host, turns are counted
    and persisted state (if any) is loaded on top.
    """

    def __init__(
        self,
        host: HostClient,
        persistence: StatePersistence,
        event_bus: EventBus | None = None,
    ) -> None:
        self._host = host
        self._persistence = persistence
        self._event_bus = event_bus or EventBus()
        self.state = SessionState()
        self.phase = SessionPhase.UNINITIALIZED

    def reset(self) -> None:
        """Drop in-memory state (disk is untouched)."""
        self.state = SessionState()
        self.phase = SessionPhase.UNINITIALIZED

    async def ensure_session(
        self, session_id: str, messages: Sequence[MessageWithParts]
    ) -> SessionState:
        """
        Make ``session_id`` the active session and bring turn and compaction
        bookkeeping up to date with ``messages``.
        """
        if self.state.session_id != session_id or self.phase is not SessionPhase.ACTIVE:
            await self._initialize(session_id, messages)
        else:
            self.detect_compaction(messages)
        self.state.current_turn = count_turns(messages, self.state.last_compaction)
        return self.state

    async def _initialize(self, session_id: str, messages: Sequence[MessageWithParts]) -> None:
        previous = self.state.session_id
        self.phase = SessionPhase.INITIALIZING
        state = SessionState(session_id=session_id)
        self.state = state

        try:
            info = await self._host.fetch_session(session_id)
            state.is_sub_agent = info.is_sub_agent
        except Exception as exc:
            _logger.warning("session_info_unavailable", session_id=session_id, error=str(exc))

        state.last_compaction = find_last_compaction(messages)
        state.current_turn = count_turns(messages, state.last_compaction)

        persisted = await self._persistence.load(session_id)
        if persisted is not None:
            persisted.apply_to(state)

        self.phase = SessionPhase.ACTIVE
        _logger.info(
            "session_initialized",
            session_id=session_id,
            previous_session_id=previous,
            is_sub_agent=state.is_sub_agent,
            restored=persisted is not None,
            current_turn=state.current_turn,
        )
        payload: SessionInitializedPayload = {
            "session_id": session_id,
            "is_sub_agent": state.is_sub_agent,
            "restored": persisted is not None,
            "current_turn": state.current_turn,
        }
        self._event_bus.publish(LetheEvent.SESSION_INITIALIZED, dict(payload))

    def detect_compaction(self, messages: Sequence[MessageWithParts]) -> bool:
        """
        Clear the tool cache and tool prune set when a newer summary appears.

        Stats, the hash registry and non-tool prune sets are kept.
        """
        state = self.state
        timestamp = find_last_compaction(messages)
        if timestamp <= state.last_compaction:
            return False

        cleared = len(state.prune.tool_ids)
        state.last_compaction = timestamp
        state.tool_parameters.clear()
        state.prune.tool_ids.clear()
        # Turns are recounted from the summary on.
        state.cursors.automata.last_turn = 0
        state.cursors.automata.last_reflection_turn = 0
        _logger.info(
            "compaction_detected",
            session_id=state.session_id,
            timestamp=timestamp,
            cleared_tools=cleared,
        )
        payload: CompactionDetectedPayload = {
            "session_id": state.session_id or "",
            "timestamp": timestamp,
            "cleared_tools": cleared,
        }
        self._event_bus.publish(LetheEvent.COMPACTION_DETECTED, dict(payload))
        return True

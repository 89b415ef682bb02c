"""Automata-mode activation and reflection turn bookkeeping."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from lethe.models.config import AutomataConfig
from lethe.models.message import MessageWithParts, TextPart
from lethe.models.state import SessionState
from lethe.state.turns import live_messages

_logger = structlog.get_logger("lethe.state")


def detect_activation(
    state: SessionState, messages: Sequence[MessageWithParts], config: AutomataConfig
) -> bool:
    """
    Activate automata mode when a live user message mentions ``config.keyword``.

    Activation is sticky for the session and records the turn it happened in.

    Returns:
        True when automata mode is active after the check.
    """
    cursor = state.cursors.automata
    if cursor.enabled:
        return True
    if not config.enabled:
        return False
    keyword = config.keyword.lower()
    for msg in live_messages(messages, state.last_compaction):
        if msg.role != "user":
            continue
        for part in msg.parts:
            if isinstance(part, TextPart) and keyword in part.text.lower():
                cursor.enabled = True
                cursor.last_turn = state.current_turn
                _logger.info(
                    "automata_activated", session_id=state.session_id, turn=state.current_turn
                )
                return True
    return False


def reflection_due(state: SessionState, config: AutomataConfig) -> bool:
    """True once ``initial_turns`` turns passed since activation or the last reflection."""
    cursor = state.cursors.automata
    if not config.enabled or not cursor.enabled:
        return False
    since = cursor.last_reflection_turn if cursor.last_reflection_turn > 0 else cursor.last_turn
    return state.current_turn - since >= config.initial_turns


def record_reflection(state: SessionState) -> None:
    state.cursors.automata.last_reflection_turn = state.current_turn
    _logger.info("automata_reflection_due", session_id=state.session_id, turn=state.current_turn)


def sync_automata(
    state: SessionState, messages: Sequence[MessageWithParts], config: AutomataConfig
) -> bool:
    """
    Run the per-update automata check.

    Returns:
        True when a reflection is due this update; the turn is recorded so
        the next one is due ``initial_turns`` later.
    """
    if not detect_activation(state, messages, config):
        return False
    if not reflection_due(state, config):
        return False
    record_reflection(state)
    return True

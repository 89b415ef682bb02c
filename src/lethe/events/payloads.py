"""Typed payload definitions for each LetheEvent.

Usage example::

    from lethe.events.bus import EventBus, LetheEvent
    from lethe.events.payloads import StrategyAppliedPayload

    def on_applied(event: LetheEvent, payload: StrategyAppliedPayload) -> None:
        print(f"{payload['strategy']}: -{payload['tokens_saved']} tokens")

    bus.subscribe(LetheEvent.STRATEGY_APPLIED, on_applied)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Session lifecycle ─────────────────────────────────────────────────────────


class SessionInitializedPayload(TypedDict):
    """Payload for :attr:`LetheEvent.SESSION_INITIALIZED`."""

    session_id: str
    is_sub_agent: bool
    restored: bool
    """True when persisted state was loaded for the session."""
    current_turn: int


class CompactionDetectedPayload(TypedDict):
    """Payload for :attr:`LetheEvent.COMPACTION_DETECTED`."""

    session_id: str
    timestamp: int
    """Creation time (ms) of the newest summary message."""
    cleared_tools: int
    """Number of pruned tool ids dropped with the tool cache."""


# ── Automatic strategies ──────────────────────────────────────────────────────


class StrategyAppliedPayload(TypedDict):
    """Payload for :attr:`LetheEvent.STRATEGY_APPLIED`. Only published when count > 0."""

    session_id: str
    strategy: str
    action: str
    count: int
    tokens_saved: int


class StrategyFailedPayload(TypedDict):
    """Payload for :attr:`LetheEvent.STRATEGY_FAILED`."""

    session_id: str
    strategy: str
    error: str


# ── Manual operations ─────────────────────────────────────────────────────────


class UnitsChangedPayload(TypedDict):
    """Payload for ``UNITS_DISCARDED``, ``UNITS_DISTILLED`` and ``UNITS_RESTORED``."""

    session_id: str
    hashes: list[str]
    tokens_saved: int
    """0 for restores."""


# ── Persistence / update loop ─────────────────────────────────────────────────


class StateSavedPayload(TypedDict):
    """Payload for :attr:`LetheEvent.STATE_SAVED`."""

    session_id: str
    total_prune_tokens: int


class UpdateAbandonedPayload(TypedDict):
    """Payload for :attr:`LetheEvent.UPDATE_ABANDONED`."""

    session_id: str
    reason: str

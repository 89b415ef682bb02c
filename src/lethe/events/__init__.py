"""Lethe event bus."""

from lethe.events.bus import EventBus, Handler, LetheEvent
from lethe.events.payloads import (
    CompactionDetectedPayload,
    SessionInitializedPayload,
    StateSavedPayload,
    StrategyAppliedPayload,
    StrategyFailedPayload,
    UnitsChangedPayload,
    UpdateAbandonedPayload,
)

__all__ = [
    "CompactionDetectedPayload",
    "EventBus",
    "Handler",
    "LetheEvent",
    "SessionInitializedPayload",
    "StateSavedPayload",
    "StrategyAppliedPayload",
    "StrategyFailedPayload",
    "UnitsChangedPayload",
    "UpdateAbandonedPayload",
]

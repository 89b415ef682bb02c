"""Shared fixtures and message builders for Lethe tests."""

from __future__ import annotations

from typing import Any

import pytest

from lethe.events.bus import EventBus, LetheEvent
from lethe.host import StaticHost
from lethe.models.config import LetheConfig, StoreConfig
from lethe.models.message import (
    Message,
    MessageWithParts,
    ReasoningPart,
    StepStartPart,
    TextPart,
    ToolPart,
    ToolStatus,
)
from lethe.models.state import SessionState
from lethe.store.persistence import StatePersistence
from lethe.tokens.estimator import TokenEstimator

SESSION_ID = "ses_TEST01"

LONG_TEXT = (
    "I looked through the configuration loader and found that the retry budget is read "
    "twice, once at import time and once per request, which explains the drift."
)


@pytest.fixture
def config(tmp_path):
    """LetheConfig storing session documents under a temp directory."""
    return LetheConfig(store=StoreConfig(storage_dir=str(tmp_path / "sessions")))


@pytest.fixture
def persistence(config):
    return StatePersistence(config.store.storage_dir)


@pytest.fixture
def estimator():
    """TokenEstimator using heuristic only (no tiktoken required in tests)."""
    e = TokenEstimator()
    e._force_heuristic = True
    return e


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[LetheEvent, dict[str, Any]]] = []

    def _collect(event: LetheEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def host():
    return StaticHost()


@pytest.fixture
def state():
    return SessionState(session_id=SESSION_ID)


def events_of(bus: EventBus, event: LetheEvent) -> list[dict[str, Any]]:
    """Payloads of every collected ``event``."""
    return [payload for name, payload in bus.collected if name == event]  # type: ignore[attr-defined]


# ── Builders ───────────────────────────────────────────────────────────────────


def make_message(
    msg_id: str,
    role: str = "assistant",
    parts: list[Any] | None = None,
    *,
    created_at: int = 1_000,
    session_id: str = SESSION_ID,
    is_summary: bool = False,
) -> MessageWithParts:
    """Helper to create a MessageWithParts with the given parts."""
    return MessageWithParts(
        message=Message(
            id=msg_id,
            session_id=session_id,
            role=role,
            created_at=created_at,
            is_summary=is_summary,
        ),
        parts=list(parts or []),
    )


def tool(
    call_id: str,
    name: str = "read",
    params: dict[str, Any] | None = None,
    output: str | None = "file contents",
    state: str = "completed",
    error: str | None = None,
) -> ToolPart:
    """Helper to create a ToolPart; errored calls carry ``error`` instead of output."""
    return ToolPart(
        tool_name=name,
        tool_call_id=call_id,
        input=dict(params or {}),
        output=output if state == "completed" else None,
        error_message=error if state == "error" else None,
        status=ToolStatus(state=state),
    )


def step(msg_id: str, *parts: Any, created_at: int = 1_000) -> MessageWithParts:
    """An assistant message opening one agentic step (one turn)."""
    return make_message(msg_id, "assistant", [StepStartPart(), *parts], created_at=created_at)


def user(msg_id: str, text: str = "please continue", created_at: int = 1_000) -> MessageWithParts:
    return make_message(msg_id, "user", [TextPart(text=text)], created_at=created_at)


def text(value: str = LONG_TEXT) -> TextPart:
    return TextPart(text=value)


def reasoning(value: str) -> ReasoningPart:
    return ReasoningPart(text=value)


def idle_steps(count: int, start: int = 100, created_at: int = 1_000) -> list[MessageWithParts]:
    """``count`` empty assistant steps, used to age earlier calls."""
    return [step(f"msg_idle_{start + i}", created_at=created_at) for i in range(count)]

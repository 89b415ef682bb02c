"""Core message and part data models as delivered by the host."""

from __future__ import annotations

import time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

# ── Part Models ────────────────────────────────────────────────────────────────


class TextPart(BaseModel):
    """A plain text segment of a message."""

    type: Literal["text"] = "text"
    text: str
    ignored: bool = False
    """Host-side flag for text that is not part of the conversation (e.g. UI echoes)."""


class ReasoningPart(BaseModel):
    """Chain-of-thought reasoning text (e.g. extended thinking blocks)."""

    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolStatus(BaseModel):
    """Lifecycle status of a tool call."""

    state: Literal["pending", "running", "completed", "error"] = "pending"
    started_at: int | None = None
    completed_at: int | None = None


class ToolPart(BaseModel):
    """A tool call and its result within an assistant message."""

    type: Literal["tool"] = "tool"
    tool_name: str
    tool_call_id: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: str | None = None
    error_message: str | None = None
    status: ToolStatus = Field(default_factory=ToolStatus)

    @property
    def state(self) -> str:
        return self.status.state

    def result_text(self) -> str:
        """Return the text the model sees for this call: output, or error when it failed."""
        if self.status.state == "error":
            return self.error_message or ""
        if self.status.state == "completed":
            return self.output or ""
        return ""


class StepStartPart(BaseModel):
    """Marker for the start of an agentic step. One step start counts as one turn."""

    type: Literal["step_start"] = "step_start"
    snapshot_ref: str | None = None


class StepFinishPart(BaseModel):
    """Marker for the end of an agentic step."""

    type: Literal["step_finish"] = "step_finish"
    snapshot_ref: str | None = None
    reason: str | None = None


class FilePart(BaseModel):
    """A file attachment (image, document) carried by a message."""

    type: Literal["file"] = "file"
    mime: str
    url: str
    filename: str | None = None


class SnapshotPart(BaseModel):
    """A workspace snapshot reference recorded by the host."""

    type: Literal["snapshot"] = "snapshot"
    snapshot: str


class SourceUrlPart(BaseModel):
    """A web citation attached to an assistant message."""

    type: Literal["source_url"] = "source_url"
    url: str
    title: str | None = None


# Discriminated union on the ``type`` field.
MessagePart = Annotated[
    TextPart
    | ReasoningPart
    | ToolPart
    | StepStartPart
    | StepFinishPart
    | FilePart
    | SnapshotPart
    | SourceUrlPart,
    Field(discriminator="type"),
]


# ── Message Models ─────────────────────────────────────────────────────────────


class Message(BaseModel):
    """A single conversation message as reported by the host."""

    id: str
    session_id: str
    role: Literal["user", "assistant", "system"]
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    """Unix millisecond timestamp."""
    completed_at: int | None = None
    parent_id: str | None = None
    agent: str = "default"
    is_summary: bool = False
    """True if this is a synthetic compaction summary produced by the host."""
    mode: str | None = None


class MessageWithParts(BaseModel):
    """A message together with its ordered list of typed parts."""

    message: Message
    parts: list[MessagePart] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.message.id

    @property
    def role(self) -> str:
        return self.message.role

    @property
    def is_summary(self) -> bool:
        return self.message.is_summary

    @property
    def created_at(self) -> int:
        return self.message.created_at

    def part_id(self, index: int) -> str:
        """Return the ``messageId:partIndex`` address of the part at ``index``."""
        return f"{self.message.id}:{index}"


class SessionInfo(BaseModel):
    """Session metadata as reported by the host."""

    id: str
    parent_id: str | None = None
    title: str | None = None

    @property
    def is_sub_agent(self) -> bool:
        """Sessions with a parent are sub-agents and are exempt from context management."""
        return self.parent_id is not None

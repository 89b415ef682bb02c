"""Turn counting and compaction detection over a message list."""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from lethe.models.message import MessageWithParts, StepStartPart


def find_last_compaction(messages: Sequence[MessageWithParts]) -> int:
    """Return the creation time (ms) of the newest assistant summary, or 0."""
    for msg in reversed(messages):
        if msg.role == "assistant" and msg.is_summary:
            return msg.created_at
    return 0


def is_compacted(msg: MessageWithParts, last_compaction: int) -> bool:
    """A message created before the compaction watermark is hidden by the host."""
    return msg.created_at < last_compaction


def live_messages(
    messages: Sequence[MessageWithParts], last_compaction: int
) -> Iterator[MessageWithParts]:
    for msg in messages:
        if not is_compacted(msg, last_compaction):
            yield msg


def count_turns(messages: Sequence[MessageWithParts], last_compaction: int = 0) -> int:
    """Count ``step_start`` parts across non-compacted messages."""
    return sum(
        1
        for msg in live_messages(messages, last_compaction)
        for part in msg.parts
        if isinstance(part, StepStartPart)
    )


def message_turns(
    messages: Sequence[MessageWithParts], last_compaction: int = 0
) -> dict[str, int]:
    """
    Map each live message id to the turn it belongs to.

    The turn of a message is the number of step starts seen up to and
    including that message.
    """
    turns: dict[str, int] = {}
    turn = 0
    for msg in live_messages(messages, last_compaction):
        turn += sum(1 for part in msg.parts if isinstance(part, StepStartPart))
        turns[msg.id] = turn
    return turns

"""Register hashes for every addressable unit in a message list."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from lethe.hashing.tags import strip_tags
from lethe.models.config import LetheConfig
from lethe.models.message import MessageWithParts, ReasoningPart, TextPart, ToolPart
from lethe.models.state import SessionState
from lethe.state.turns import live_messages

_logger = structlog.get_logger("lethe.hashing")


def tool_identity(tool_name: str, call_id: str) -> str:
    return f"{tool_name}:{call_id}"


def assign_hashes(
    state: SessionState,
    messages: Sequence[MessageWithParts],
    config: LetheConfig,
) -> int:
    """
    Register new units in ``state.hashes``.

    Addressable units are calls of non-protected tools, assistant text parts
    of at least ``hashing.min_message_length`` characters and, when
    ``hashing.hash_reasoning`` is set, reasoning parts. Messages hidden by a
    compaction are skipped. Registration is idempotent, so units seen on an
    earlier update keep their hash.

    Returns:
        The number of newly registered units.
    """
    registry = state.hashes
    before = len(registry)
    protected = set(config.protected_tools)

    for msg in live_messages(messages, state.last_compaction):
        for i, part in enumerate(msg.parts):
            if isinstance(part, ToolPart):
                if not part.tool_call_id or part.tool_name in protected:
                    continue
                registry.register(
                    "tool",
                    part.tool_call_id,
                    tool_identity(part.tool_name, part.tool_call_id),
                    tool_name=part.tool_name,
                    preview=part.tool_name,
                )
            elif isinstance(part, TextPart):
                if msg.role != "assistant" or part.ignored:
                    continue
                text = strip_tags(part.text)
                if len(text) < config.hashing.min_message_length:
                    continue
                registry.register("message", msg.part_id(i), text)
            elif isinstance(part, ReasoningPart) and config.hashing.hash_reasoning:
                text = strip_tags(part.text)
                if text.strip():
                    registry.register("reasoning", msg.part_id(i), text)

    added = len(registry) - before
    if added:
        _logger.debug("hashes_assigned", session_id=state.session_id, added=added, total=len(registry))
    return added

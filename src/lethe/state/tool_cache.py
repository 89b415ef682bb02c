"""Per-update sync of the tool-parameter cache and the todo snapshot."""

from __future__ import annotations

import json
from collections.abc import Sequence

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaValidationError

from lethe.models.message import MessageWithParts, StepStartPart, ToolPart
from lethe.models.state import SessionState, TodoItem, ToolParameterEntry
from lethe.state.turns import live_messages

_logger = structlog.get_logger("lethe.state")

_TODO_LIST = TypeAdapter(list[TodoItem])


def sync_tool_cache(
    state: SessionState,
    messages: Sequence[MessageWithParts],
    limit: int = 1_000,
) -> int:
    """
    Bring ``state.tool_parameters`` up to date with ``messages``.

    New calls are cached with the turn they occurred in; cached calls are
    refreshed when their status changes. The cache is FIFO-trimmed to
    ``limit`` entries afterwards, and the todo snapshot is refreshed.

    Returns:
        The number of entries added or refreshed.
    """
    changed = 0
    turn = 0
    for msg in live_messages(messages, state.last_compaction):
        for part in msg.parts:
            if isinstance(part, StepStartPart):
                turn += 1
                continue
            if not isinstance(part, ToolPart) or not part.tool_call_id:
                continue
            cached = state.tool_parameters.get(part.tool_call_id)
            if cached is not None and cached.status == part.state:
                continue
            state.tool_parameters[part.tool_call_id] = ToolParameterEntry(
                tool=part.tool_name,
                parameters=dict(part.input),
                status=part.state,
                error=part.error_message if part.state == "error" else None,
                turn=cached.turn if cached is not None else turn,
            )
            changed += 1
            _logger.debug(
                "tool_cached", call_id=part.tool_call_id, tool=part.tool_name, turn=turn
            )

    evicted = trim_tool_cache(state, limit)
    track_todos(state, messages)
    if changed or evicted:
        _logger.debug(
            "tool_cache_synced",
            session_id=state.session_id,
            size=len(state.tool_parameters),
            changed=changed,
            evicted=evicted,
        )
    return changed


def trim_tool_cache(state: SessionState, limit: int) -> int:
    """
    Evict the oldest cache entries beyond ``limit``.

    Hash-registry entries and cursor references of evicted calls are dropped
    with them. Returns the number of evicted entries.
    """
    overflow = len(state.tool_parameters) - limit
    if overflow <= 0:
        return 0
    for call_id in list(state.tool_parameters)[:overflow]:
        del state.tool_parameters[call_id]
        state.hashes.remove_id("tool", call_id)
        state.cursors.forget_call(call_id)
    return overflow


def parse_todos(output: str | None) -> list[TodoItem] | None:
    """Parse a ``todowrite`` output as a todo list, or None when it is not one."""
    if not output:
        return None
    try:
        return _TODO_LIST.validate_python(json.loads(output))
    except (json.JSONDecodeError, SchemaValidationError):
        return None


def track_todos(state: SessionState, messages: Sequence[MessageWithParts]) -> bool:
    """
    Refresh the todo snapshot from the latest completed ``todowrite``.

    Items that remain ``in_progress`` keep the turn they started in; items
    newly marked ``in_progress`` get the turn of the write.

    Returns:
        True when a new write was observed.
    """
    latest_write: tuple[str, int, list[TodoItem] | None] | None = None
    latest_read: str | None = None
    turn = 0
    for msg in live_messages(messages, state.last_compaction):
        for part in msg.parts:
            if isinstance(part, StepStartPart):
                turn += 1
            elif isinstance(part, ToolPart) and part.state == "completed":
                if part.tool_name == "todowrite":
                    latest_write = (part.tool_call_id, turn, parse_todos(part.output))
                elif part.tool_name == "todoread":
                    latest_read = part.tool_call_id

    cursor = state.cursors.todo
    if latest_read is not None:
        cursor.last_read_call_id = latest_read
    if latest_write is None or latest_write[0] == cursor.last_write_call_id:
        return False

    call_id, write_turn, todos = latest_write
    cursor.last_write_call_id = call_id
    cursor.last_turn = write_turn
    if todos is not None:
        previous = {item.id: item for item in state.todos}
        for item in todos:
            if item.status != "in_progress":
                continue
            old = previous.get(item.id)
            if old is not None and old.status == "in_progress" and old.in_progress_since:
                item.in_progress_since = old.in_progress_since
            else:
                item.in_progress_since = write_turn
        state.todos = todos
        _logger.info("todos_updated", session_id=state.session_id, items=len(todos))
    return True

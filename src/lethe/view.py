"""Render the pruned view of a conversation: what the agent actually sees."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from lethe.hashing.tags import render_tag, strip_tags
from lethe.models.config import LetheConfig
from lethe.models.message import MessageWithParts, ReasoningPart, TextPart, ToolPart
from lethe.models.state import SessionState
from lethe.state.turns import is_compacted

PRUNED_OUTPUT_HEADER = "[Output removed to save context - information superseded or no longer needed]"
PRUNED_ERROR_INPUT = "[input removed due to failed tool call]"
PRUNED_MESSAGE_PART = "[Assistant message part removed to save context]"

BREADCRUMB_KEYS: dict[str, tuple[str, ...]] = {
    "read": ("filePath",),
    "write": ("filePath",),
    "edit": ("filePath",),
    "glob": ("pattern", "path"),
    "grep": ("pattern", "include", "path"),
    "bash": ("command", "description"),
    "webfetch": ("url",),
    "task": ("description",),
}

MAX_PARAM_LENGTH = 50


def _format_param(key: str, value: Any) -> str | None:
    if isinstance(value, bool):
        return f"{key}: {str(value).lower()}"
    if isinstance(value, int | float):
        return f"{key}: {value}"
    if isinstance(value, str):
        if len(value) > MAX_PARAM_LENGTH:
            value = value[: MAX_PARAM_LENGTH - 3] + "..."
        return f'{key}: "{value}"'
    return None


def breadcrumb(tool: str, params: dict[str, Any], status: str) -> str:
    """
    One-line stand-in for a pruned tool output.

    Known tools show their key parameters; others show their first two.
    Strings over 50 characters are cut to 47 plus ``...``.

    Example::

        >>> breadcrumb("read", {"filePath": "/a.py"}, "completed")
        '[Output removed to save context - information superseded or no longer needed]\\nread({filePath: "/a.py"}) → completed'
    """
    keys = BREADCRUMB_KEYS.get(tool, tuple(params)[:2])
    rendered: list[str] = []
    for key in keys:
        if key not in params:
            continue
        text = _format_param(key, params[key])
        if text is not None:
            rendered.append(text)
    args = "{" + ", ".join(rendered) + "}" if rendered else ""
    return f"{PRUNED_OUTPUT_HEADER}\n{tool}({args}) → {status}"


def _segment_spans(state: SessionState, address: str) -> list[tuple[int, int, str]]:
    """Pruned ``(start, end, segment_id)`` spans inside the part at ``address``."""
    spans: list[tuple[int, int, str]] = []
    prefix = address + ":"
    for segment_id in state.prune.segment_ids:
        if not segment_id.startswith(prefix):
            continue
        start, _, end = segment_id[len(prefix) :].partition("-")
        if start.isdigit() and end.isdigit():
            spans.append((int(start), int(end), segment_id))
    return spans


def cut_segments(text: str, state: SessionState, address: str) -> str:
    """Remove pruned segments from ``text``; distilled segments show their replacement."""
    spans = _segment_spans(state, address)
    if not spans:
        return text
    spans.sort(reverse=True)
    last_start = len(text) + 1
    for start, end, segment_id in spans:
        if end > last_start or end > len(text):
            # Overlaps an already-cut segment, or the part has since changed.
            continue
        replacement = state.distillations.get(segment_id, "")
        text = text[:start] + replacement + text[end:]
        last_start = start
    return text


def _render_tool(part: ToolPart, state: SessionState, tag: bool) -> None:
    call_id = part.tool_call_id
    if state.is_pruned("tool", call_id):
        distilled = state.distillations.get(call_id)
        if part.state == "completed":
            part.output = distilled or breadcrumb(part.tool_name, part.input, part.state)
        elif part.state == "error":
            part.input = {
                key: PRUNED_ERROR_INPUT if isinstance(value, str) else value
                for key, value in part.input.items()
            }
            if distilled:
                part.error_message = distilled
        return
    if not tag:
        return
    hash_value = state.hashes.hash_for("tool", call_id)
    if hash_value is None:
        return
    if part.state == "completed" and part.output is not None:
        part.output = render_tag("tool", hash_value, strip_tags(part.output))
    elif part.state == "error" and part.error_message is not None:
        part.error_message = render_tag("tool", hash_value, strip_tags(part.error_message))


def _render_text(
    part: TextPart | ReasoningPart, address: str, state: SessionState, config: LetheConfig
) -> bool:
    """Rewrite ``part`` in place. Returns False when the part must leave the view."""
    kind = "reasoning" if isinstance(part, ReasoningPart) else "message"
    if state.is_pruned(kind, address):
        if address in state.distillations:
            part.text = state.distillations[address]
        elif kind != "reasoning":
            part.text = PRUNED_MESSAGE_PART
        elif config.manual.reasoning_discard_policy == "omit":
            return False
        else:
            part.text = config.manual.reasoning_placeholder
        return True
    text = part.text
    if kind == "message":
        text = cut_segments(text, state, address)
    text = strip_tags(text)
    hash_value = state.hashes.hash_for(kind, address)
    if config.hashing.inject_tags and hash_value is not None:
        text = render_tag(kind, hash_value, text)
    part.text = text
    return True


def build_view(
    messages: Sequence[MessageWithParts],
    state: SessionState,
    config: LetheConfig,
) -> list[MessageWithParts]:
    """
    Return deep copies of ``messages`` with prunes applied and units tagged.

    Messages hidden by a compaction are copied unchanged. Rendering an
    already-rendered text again yields the same result, since existing
    tags are stripped before new ones are added. Under the ``"omit"``
    reasoning policy, discarded reasoning parts are removed from the copy.
    """
    view: list[MessageWithParts] = []
    tag = config.hashing.inject_tags
    for msg in messages:
        copy = msg.model_copy(deep=True)
        view.append(copy)
        if is_compacted(msg, state.last_compaction):
            continue
        kept = []
        for i, part in enumerate(copy.parts):
            if isinstance(part, ToolPart):
                _render_tool(part, state, tag)
            elif isinstance(part, TextPart) and msg.role == "assistant" and not part.ignored:
                _render_text(part, copy.part_id(i), state, config)
            elif isinstance(part, ReasoningPart):
                if not _render_text(part, copy.part_id(i), state, config):
                    continue
            kept.append(part)
        copy.parts = kept
    return view

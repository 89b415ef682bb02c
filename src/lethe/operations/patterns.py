"""Text-span addressing of assistant messages (``"start...end"`` patterns)."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from lethe.models.message import MessageWithParts, TextPart

ELLIPSIS = "..."


def normalize(text: str) -> str:
    """Trim, collapse whitespace runs to one space and lower-case."""
    return re.sub(r"\s+", " ", text.strip()).lower()


def _fragment(piece: str) -> str:
    """Regex for a normalized fragment that tolerates any whitespace run."""
    return r"\s+".join(re.escape(word) for word in piece.split(" "))


def find_span(text: str, pattern: str) -> tuple[int, int] | None:
    """
    Locate ``pattern`` in ``text`` and return ``(start, end)`` offsets.

    ``"start..."`` spans to the end of the text and ``"...end"`` from its
    beginning; ``"start...end"`` spans the first ``start`` through the next
    ``end``. Matching ignores case and whitespace differences.
    """
    norm = normalize(pattern)
    if not norm or norm == ELLIPSIS:
        return None
    leading = norm.startswith(ELLIPSIS)
    trailing = norm.endswith(ELLIPSIS) and len(norm) > len(ELLIPSIS)
    core = norm[3 if leading else 0 : len(norm) - 3 if trailing else len(norm)].strip()
    if not core:
        return None

    start_piece, sep, end_piece = core.partition(ELLIPSIS)
    if sep:
        regex = _fragment(start_piece.strip()) + r".*?" + _fragment(end_piece.strip())
    else:
        regex = _fragment(core)
    if trailing and not leading:
        regex += r".*\Z"
    if leading and not trailing:
        regex = r"\A.*" + regex

    found = re.search(regex, text, re.IGNORECASE | re.DOTALL)
    if found is None:
        return None
    return found.start(), found.end()


@dataclass(frozen=True)
class PatternMatch:
    message_id: str
    part_index: int
    start: int
    end: int
    whole: bool
    """True when the span covers the whole part (ignoring surrounding whitespace)."""

    @property
    def part_id(self) -> str:
        return f"{self.message_id}:{self.part_index}"

    @property
    def segment_id(self) -> str:
        return f"{self.part_id}:{self.start}-{self.end}"

    @property
    def unit_id(self) -> str:
        return self.part_id if self.whole else self.segment_id


def find_pattern_matches(
    messages: Sequence[MessageWithParts], pattern: str
) -> list[PatternMatch]:
    """Find ``pattern`` in every assistant text part, in conversation order."""
    found: list[PatternMatch] = []
    for msg in messages:
        if msg.role != "assistant":
            continue
        for i, part in enumerate(msg.parts):
            if not isinstance(part, TextPart) or part.ignored or not part.text:
                continue
            span = find_span(part.text, pattern)
            if span is None:
                continue
            start, end = span
            content_start = len(part.text) - len(part.text.lstrip())
            content_end = len(part.text.rstrip())
            whole = start <= content_start and end >= content_end
            found.append(PatternMatch(msg.id, i, start, end, whole))
    return found

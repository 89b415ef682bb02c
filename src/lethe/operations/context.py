"""
The unified ``context`` operation: one entry point for discard, distill and
restore, with bulk and text-span targets on top of plain hashes.

Target forms:

- a hash (``a1b2c3`` or ``a1b2c3_2``);
- a bulk selector: ``[tools]``, ``[messages]``, ``[*]`` or ``[all]``;
- anything else is a text pattern (``"start..."``, ``"...end"``,
  ``"start...end"`` or a plain substring) matched against assistant text.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Literal

import structlog

from lethe.errors import InvalidTargetError, ValidationError
from lethe.hashing.tags import strip_tags
from lethe.models.config import LetheConfig
from lethe.models.message import MessageWithParts
from lethe.models.results import OperationResult, RestoreResult
from lethe.models.state import SessionState, UnitKind
from lethe.operations.manual import DistillEntry, ManualOperations
from lethe.operations.patterns import find_pattern_matches
from lethe.state.turns import live_messages
from lethe.strategies.base import UnitIndex
from lethe.tokens.estimator import TokenEstimator

_logger = structlog.get_logger("lethe.operations")

ContextAction = Literal["discard", "distill", "restore"]

Target = tuple[str] | tuple[str, str]

HASH_RE = re.compile(r"^[a-f0-9]{6}(?:_\d+)?$")

BULK_TARGETS: dict[str, tuple[UnitKind, ...]] = {
    "[tools]": ("tool",),
    "[messages]": ("message", "segment"),
    "[*]": ("tool", "message", "reasoning", "segment"),
    "[all]": ("tool", "message", "reasoning", "segment"),
}

SEGMENT_TAG = "segment"


def is_hash(target: str) -> bool:
    return bool(HASH_RE.match(target.strip().lower()))


def is_bulk(target: str) -> bool:
    return target.strip().lower() in BULK_TARGETS


def _in_view(index: UnitIndex, kind: str, unit_id: str) -> bool:
    if kind == "tool":
        return unit_id in index.tool_calls
    if kind == "segment":
        unit_id = unit_id.rpartition(":")[0]
    return unit_id in index.parts


class ContextOperation:
    """
    Expand ``context`` targets to hashes and dispatch to :class:`ManualOperations`.

    Example::

        op = ContextOperation(config, estimator)
        op.run(state, messages, "discard", [("[tools]",)], reason="completion")
        op.run(state, messages, "distill", [("Let me check...done", "checked config")])
    """

    def __init__(
        self,
        config: LetheConfig,
        estimator: TokenEstimator,
        manual: ManualOperations | None = None,
    ) -> None:
        self._config = config
        self._manual = manual or ManualOperations(config, estimator)

    def run(
        self,
        state: SessionState,
        messages: Sequence[MessageWithParts],
        action: ContextAction,
        targets: Sequence[Target],
        reason: str = "noise",
    ) -> OperationResult | RestoreResult:
        """
        Apply ``action`` to every unit ``targets`` resolve to.

        Raises:
            InvalidTargetError: A target is malformed, matches nothing, or is
                not allowed for ``action``.
            ValidationError: Raised by the underlying discard or distill.
        """
        if action not in ("discard", "distill", "restore"):
            raise ValidationError(f"Unknown context action {action!r}.")
        if not targets:
            raise ValidationError("No targets provided.")

        if action == "distill":
            entries = [self._distill_entry(state, messages, t) for t in targets]
            return self._manual.distill(state, messages, entries)

        hashes: list[str] = []
        for target in targets:
            if not target or not target[0].strip():
                raise InvalidTargetError(target, "target is empty")
            for hash_value in self.expand(state, messages, target[0], action):
                if hash_value not in hashes:
                    hashes.append(hash_value)

        _logger.debug(
            "context_targets_expanded",
            session_id=state.session_id,
            action=action,
            targets=len(targets),
            hashes=len(hashes),
        )
        if action == "restore":
            return self._manual.restore(state, hashes)
        if not hashes:
            raise InvalidTargetError(targets, "no eligible units to discard")
        return self._manual.discard(state, messages, hashes, reason)

    def expand(
        self,
        state: SessionState,
        messages: Sequence[MessageWithParts],
        target: str,
        action: ContextAction,
    ) -> list[str]:
        """Resolve one target string to the hashes it addresses."""
        raw = target.strip()
        lowered = raw.lower()
        if HASH_RE.match(lowered):
            return [lowered]
        if lowered in BULK_TARGETS:
            return self._expand_bulk(state, messages, BULK_TARGETS[lowered], action)
        return self._expand_pattern(state, messages, raw)

    # ── Expansion ──────────────────────────────────────────────────────────────

    def _expand_bulk(
        self,
        state: SessionState,
        messages: Sequence[MessageWithParts],
        kinds: tuple[UnitKind, ...],
        action: ContextAction,
    ) -> list[str]:
        # Units hidden by a compaction or gone from the host are not eligible.
        index = UnitIndex.build(list(live_messages(messages, state.last_compaction)))
        entries = [e for e in state.hashes if e.type in kinds and _in_view(index, e.type, e.id)]
        if action == "restore":
            return [e.hash for e in entries if state.is_pruned(e.type, e.id)]

        eligible: list[str] = []
        for entry in entries:
            unit = self._manual.resolve(state, entry.hash)
            try:
                self._manual.check_prunable(state, index, unit)
            except ValidationError:
                continue
            eligible.append(entry.hash)
        return eligible

    def _expand_pattern(
        self, state: SessionState, messages: Sequence[MessageWithParts], pattern: str
    ) -> list[str]:
        live = list(live_messages(messages, state.last_compaction))
        matches = find_pattern_matches(live, pattern)
        if not matches:
            raise InvalidTargetError(pattern, "no assistant text matches this pattern")

        index = UnitIndex.build(live)
        hashes: list[str] = []
        for match in matches:
            if match.whole:
                text = strip_tags(index.text_of("message", match.part_id))
                hashes.append(state.hashes.register("message", match.part_id, text))
                continue
            text = index.text_of("segment", match.segment_id)
            hashes.append(
                state.hashes.register(
                    "segment",
                    match.segment_id,
                    text,
                    start=match.start,
                    end=match.end,
                    tag_name=SEGMENT_TAG,
                )
            )
        return hashes

    def _distill_entry(
        self, state: SessionState, messages: Sequence[MessageWithParts], target: Target
    ) -> DistillEntry:
        if len(target) != 2 or not target[1].strip():
            raise InvalidTargetError(target, "distill targets need a replacement summary")
        raw, summary = target
        if is_bulk(raw):
            raise InvalidTargetError(raw, "bulk targets cannot be distilled")
        hashes = self.expand(state, messages, raw, "distill")
        if len(hashes) != 1:
            raise InvalidTargetError(
                raw, f"pattern matches {len(hashes)} units; distill needs exactly one"
            )
        return DistillEntry(hash=hashes[0], replace_content=summary)

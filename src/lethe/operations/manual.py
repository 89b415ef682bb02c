"""
Manual discard, distill and restore of hashed units.

Every request is validated in full before anything is mutated: one bad
hash rejects the whole discard or distill. Restore is the exception; it
reports per hash and never fails the batch.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

import structlog
from pydantic import BaseModel

from lethe.errors import (
    AlreadyPrunedError,
    InvalidReasonError,
    ProtectedFilePathError,
    ProtectedToolError,
    UnknownHashError,
    ValidationError,
)
from lethe.hashing.registry import HashEntry
from lethe.models.config import LetheConfig
from lethe.models.message import MessageWithParts
from lethe.models.results import OperationResult, RestoreResult
from lethe.models.state import DiscardRecord, SessionState, UnitKind
from lethe.protection import file_path_from_parameters, is_protected_path, is_protected_tool
from lethe.strategies.base import UnitIndex
from lethe.tokens.estimator import TokenEstimator

_logger = structlog.get_logger("lethe.operations")

DiscardReason = Literal["noise", "completion", "superseded", "exploration", "duplicate"]

DISCARD_REASONS: tuple[str, ...] = ("noise", "completion", "superseded", "exploration", "duplicate")


class DistillEntry(BaseModel):
    """One distill request: the unit's hash and the text that replaces it."""

    hash: str
    replace_content: str


@dataclass(frozen=True)
class ResolvedUnit:
    hash: str
    kind: UnitKind
    unit_id: str
    tool_name: str | None = None


def resolve_reasoning_discard(
    units: Sequence[ResolvedUnit],
    policy: Literal["placeholder", "omit"],
    placeholder: str,
) -> tuple[list[ResolvedUnit], dict[str, str]]:
    """
    Decide how a discard applies to reasoning units.

    Under ``"placeholder"`` reasoning units become distills whose text is
    ``placeholder`` (hosts that require a non-empty reasoning field keep
    one); under ``"omit"`` they are discarded like any other unit.

    Returns:
        ``(omitted, distilled)`` where ``distilled`` maps hash to replacement text.
    """
    if policy == "omit":
        return list(units), {}
    omitted = [unit for unit in units if unit.kind != "reasoning"]
    distilled = {unit.hash: placeholder for unit in units if unit.kind == "reasoning"}
    return omitted, distilled


class ManualOperations:
    """
    Validate and apply manual prune requests against one session state.

    Example::

        ops = ManualOperations(config, estimator)
        result = ops.discard(state, messages, ["a1b2c3"], "completion")
        print(result.summary())
    """

    def __init__(self, config: LetheConfig, estimator: TokenEstimator) -> None:
        self._config = config
        self._estimator = estimator

    # ── Validation ─────────────────────────────────────────────────────────────

    def resolve(self, state: SessionState, hash_value: str) -> ResolvedUnit:
        """Resolve a hash to its unit. Raises :class:`UnknownHashError`."""
        entry = state.hashes.lookup(hash_value)
        if entry is None:
            raise UnknownHashError(hash_value)
        return _unit_of(entry)

    def check_prunable(self, state: SessionState, index: UnitIndex, unit: ResolvedUnit) -> None:
        """
        Raise when ``unit`` may not be pruned.

        Raises:
            AlreadyPrunedError: The unit is already in its prune set.
            ProtectedToolError: The unit is a call of a protected tool.
            ProtectedFilePathError: The unit is a call on a protected path.
        """
        if state.is_pruned(unit.kind, unit.unit_id):
            raise AlreadyPrunedError(unit.hash, unit.unit_id)
        if unit.kind != "tool":
            return

        tool = unit.tool_name
        params: dict = {}
        entry = state.tool_parameters.get(unit.unit_id)
        if entry is not None:
            tool = entry.tool
            params = entry.parameters
        part = index.tool_calls.get(unit.unit_id)
        if part is not None:
            tool = part.tool_name
            params = part.input
        if tool is not None and is_protected_tool(tool, self._config.protected_tools):
            raise ProtectedToolError(tool, self._config.protected_tools)
        path = file_path_from_parameters(params)
        if is_protected_path(path, self._config.protected_file_patterns):
            raise ProtectedFilePathError(path or "", self._config.protected_file_patterns)

    def _resolve_all(
        self, state: SessionState, index: UnitIndex, hashes: Iterable[str]
    ) -> list[ResolvedUnit]:
        units: list[ResolvedUnit] = []
        seen: set[str] = set()
        for raw in hashes:
            hash_value = raw.strip().lower()
            if hash_value in seen:
                continue
            seen.add(hash_value)
            unit = self.resolve(state, hash_value)
            self.check_prunable(state, index, unit)
            units.append(unit)
        return units

    # ── Operations ─────────────────────────────────────────────────────────────

    def discard(
        self,
        state: SessionState,
        messages: Sequence[MessageWithParts],
        hashes: Sequence[str],
        reason: str,
    ) -> OperationResult:
        """
        Prune the units behind ``hashes`` with no replacement text.

        Raises:
            InvalidReasonError: ``reason`` is not a known reason code.
            ValidationError: Any hash is unknown, already pruned or protected.
        """
        if reason not in DISCARD_REASONS:
            raise InvalidReasonError(reason, DISCARD_REASONS)
        if not hashes:
            raise ValidationError("No hashes provided.")
        index = UnitIndex.build(messages)
        units = self._resolve_all(state, index, hashes)

        manual = self._config.manual
        omitted, placeholders = resolve_reasoning_discard(
            units, manual.reasoning_discard_policy, manual.reasoning_placeholder
        )

        tokens = 0
        count = 0
        for unit in omitted:
            if state.prune.add(unit.kind, unit.unit_id):
                count += 1
                tokens += self._estimator.estimate(index.text_of(unit.kind, unit.unit_id))
        state.stats.record("manual_discard", count, tokens)

        by_hash = {unit.hash: unit for unit in units}
        distilled_tokens = self._apply_distills(state, index, by_hash, placeholders)

        total = tokens + distilled_tokens
        state.append_discard(
            DiscardRecord(hashes=[u.hash for u in units], tokens_saved=total, reason=reason),
            manual.discard_history_limit,
        )
        _logger.info(
            "units_discarded",
            session_id=state.session_id,
            count=len(units),
            tokens_saved=total,
            reason=reason,
            placeholders=len(placeholders),
        )
        return OperationResult(
            action="discard",
            hashes=[u.hash for u in units],
            unit_ids=[u.unit_id for u in units],
            tokens_saved=total,
            reason=reason,
        )

    def distill(
        self,
        state: SessionState,
        messages: Sequence[MessageWithParts],
        entries: Sequence[DistillEntry],
    ) -> OperationResult:
        """
        Prune units and store replacement text to render in their place.

        Raises:
            ValidationError: Any hash is unknown, already pruned or protected,
                or a replacement is blank.
        """
        if not entries:
            raise ValidationError("No distill entries provided.")
        for entry in entries:
            if not entry.replace_content.strip():
                raise ValidationError(f"Replacement text for {entry.hash!r} is blank.")
        index = UnitIndex.build(messages)
        units = self._resolve_all(state, index, [e.hash for e in entries])
        by_hash = {unit.hash: unit for unit in units}
        replacements = {e.hash.strip().lower(): e.replace_content for e in entries}

        tokens = self._apply_distills(state, index, by_hash, replacements)
        state.append_discard(
            DiscardRecord(hashes=list(by_hash), tokens_saved=tokens, reason="distill"),
            self._config.manual.discard_history_limit,
        )
        _logger.info(
            "units_distilled", session_id=state.session_id, count=len(units), tokens_saved=tokens
        )
        return OperationResult(
            action="distill",
            hashes=list(by_hash),
            unit_ids=[u.unit_id for u in units],
            tokens_saved=tokens,
        )

    def restore(self, state: SessionState, hashes: Sequence[str]) -> RestoreResult:
        """
        Un-prune the units behind ``hashes``.

        Unknown hashes and units that are not pruned are reported, not raised.
        Stored replacement text is dropped with the prune.
        """
        result = RestoreResult()
        for raw in hashes:
            hash_value = raw.strip().lower()
            entry = state.hashes.lookup(hash_value)
            if entry is None:
                result.not_found.append(hash_value)
                continue
            unit = _unit_of(entry)
            if not state.prune.remove(unit.kind, unit.unit_id):
                result.not_pruned.append(hash_value)
                continue
            state.distillations.pop(unit.unit_id, None)
            result.restored.append(hash_value)
        _logger.info(
            "units_restored",
            session_id=state.session_id,
            restored=len(result.restored),
            not_found=len(result.not_found),
            not_pruned=len(result.not_pruned),
        )
        return result

    def _apply_distills(
        self,
        state: SessionState,
        index: UnitIndex,
        units: dict[str, ResolvedUnit],
        replacements: dict[str, str],
    ) -> int:
        estimate = self._estimator.estimate
        tokens = 0
        count = 0
        for hash_value, text in replacements.items():
            unit = units[hash_value]
            if not state.prune.add(unit.kind, unit.unit_id):
                continue
            state.distillations[unit.unit_id] = text
            tokens += max(0, estimate(index.text_of(unit.kind, unit.unit_id)) - estimate(text))
            count += 1
        state.stats.record("distillation", count, tokens)
        return tokens


def _unit_of(entry: HashEntry) -> ResolvedUnit:
    kind = entry.type if entry.type in ("tool", "message", "reasoning", "segment") else "message"
    return ResolvedUnit(hash=entry.hash, kind=kind, unit_id=entry.id, tool_name=entry.tool_name)

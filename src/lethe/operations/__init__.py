"""Manual discard, distill and restore operations."""

from lethe.operations.context import ContextOperation
from lethe.operations.manual import (
    DISCARD_REASONS,
    DistillEntry,
    ManualOperations,
    resolve_reasoning_discard,
)

__all__ = [
    "DISCARD_REASONS",
    "ContextOperation",
    "DistillEntry",
    "ManualOperations",
    "resolve_reasoning_discard",
]

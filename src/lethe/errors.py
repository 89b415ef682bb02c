"""Exception hierarchy for Lethe."""

from __future__ import annotations

from collections.abc import Iterable

# ── Base ───────────────────────────────────────────────────────────────────────


class LetheError(Exception):
    """Base class for all Lethe errors."""


# ── Manual operation validation ────────────────────────────────────────────────


class ValidationError(LetheError):
    """Raised when a manual discard/distill/restore request is rejected.

    The mutation never happens when this is raised.
    """


class UnknownHashError(ValidationError):
    """Raised when a hash does not resolve to any registered unit."""

    def __init__(self, hash_value: str) -> None:
        super().__init__(
            f"Unknown hash: {hash_value!r}. Use the 6-character hashes shown in "
            "prunable_hash attributes (e.g. a1b2c3)."
        )
        self.hash = hash_value


class AlreadyPrunedError(ValidationError):
    """Raised when a hash refers to a unit that is already pruned."""

    def __init__(self, hash_value: str, unit_id: str) -> None:
        super().__init__(f"Hash {hash_value!r} ({unit_id}) has already been pruned.")
        self.hash = hash_value
        self.unit_id = unit_id


class ProtectedToolError(ValidationError):
    """Raised when a request targets the output of a protected tool."""

    def __init__(self, tool_name: str, protected_tools: Iterable[str]) -> None:
        self.tool_name = tool_name
        self.protected_tools = sorted(set(protected_tools))
        super().__init__(
            f"Cannot prune: {tool_name!r} is a protected tool.\n"
            f"Protected tools: {', '.join(self.protected_tools)}\n"
            "To modify protection, update 'protected_tools' in the Lethe config."
        )


class ProtectedFilePathError(ValidationError):
    """Raised when a request targets a tool call on a protected file path."""

    def __init__(self, file_path: str, patterns: Iterable[str]) -> None:
        self.file_path = file_path
        self.patterns = list(patterns)
        listing = f"\nProtected patterns: {', '.join(self.patterns)}" if self.patterns else ""
        super().__init__(
            f"Cannot prune: {file_path} is a protected file path.{listing}\n"
            "To modify protection, update 'protected_file_patterns' in the Lethe config."
        )


class InvalidReasonError(ValidationError):
    """Raised when a discard reason is not one of the accepted reason codes."""

    def __init__(self, reason: str, allowed: Iterable[str]) -> None:
        self.reason = reason
        self.allowed = list(allowed)
        super().__init__(
            f"Invalid discard reason {reason!r}. Expected one of: {', '.join(self.allowed)}"
        )


class InvalidTargetError(ValidationError):
    """Raised when a target is malformed or matches nothing."""

    def __init__(self, target: object, detail: str) -> None:
        super().__init__(f"Invalid target {target!r}: {detail}")
        self.target = target


# ── Internal failures (never escape their boundary) ───────────────────────────


class StrategyError(LetheError):
    """Wraps an exception raised inside an automatic strategy."""

    def __init__(self, strategy: str, cause: BaseException) -> None:
        super().__init__(f"Strategy {strategy!r} failed: {cause}")
        self.strategy = strategy
        self.cause = cause


class PersistenceError(LetheError):
    """Wraps a disk or serialization failure while saving or loading state."""

    def __init__(self, session_id: str, operation: str, cause: BaseException) -> None:
        super().__init__(f"Failed to {operation} state for session {session_id!r}: {cause}")
        self.session_id = session_id
        self.operation = operation
        self.cause = cause


class MessageFetchTimeout(LetheError):
    """Raised when the host does not return the message list in time."""

    def __init__(self, session_id: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout}s fetching messages for {session_id!r}")
        self.session_id = session_id
        self.timeout = timeout

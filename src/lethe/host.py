"""The capability interface Lethe needs from its host agent runtime."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from lethe.models.message import MessageWithParts, SessionInfo


@runtime_checkable
class HostClient(Protocol):
    """
    Minimal host adapter.

    Implementations wrap whatever SDK the host exposes; Lethe never sees the
    concrete client type.
    """

    async def fetch_messages(self, session_id: str) -> list[MessageWithParts]:
        """Return the full, ordered message list of ``session_id``."""
        ...

    async def fetch_session(self, session_id: str) -> SessionInfo:
        """Return metadata for ``session_id`` (used for sub-agent detection)."""
        ...


class StaticHost:
    """
    In-memory host holding fixed sessions and message lists.

    Useful for replaying recorded conversations and in tests.
    """

    def __init__(
        self,
        messages: dict[str, list[MessageWithParts]] | None = None,
        sessions: dict[str, SessionInfo] | None = None,
    ) -> None:
        self.messages: dict[str, list[MessageWithParts]] = dict(messages or {})
        self.sessions: dict[str, SessionInfo] = dict(sessions or {})

    async def fetch_messages(self, session_id: str) -> list[MessageWithParts]:
        return list(self.messages.get(session_id, []))

    async def fetch_session(self, session_id: str) -> SessionInfo:
        return self.sessions.get(session_id) or SessionInfo(id=session_id)

"""
Atomic JSON persistence of per-session state.

One document per session id lives at ``<storage_dir>/<session_id>.json``.
Writes go to a temporary file in the same directory which is fsynced and
then renamed over the destination, so readers never observe a partial
document. Writes to the same path are serialised through a per-path
``asyncio.Lock``; a failed write releases the lock like a successful one.

Neither :meth:`StatePersistence.save` nor :meth:`StatePersistence.load`
raise: failures are logged and reported as ``False`` / ``None``.

Usage::

    store = StatePersistence("~/.local/share/lethe/sessions")
    await store.save(state)
    persisted = await store.load(state.session_id)
    if persisted is not None:
        persisted.apply_to(state)
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError

from lethe.errors import PersistenceError
from lethe.hashing.registry import HashEntry, HashRegistry
from lethe.models.results import AggregatedStats
from lethe.models.state import (
    Cursors,
    DiscardRecord,
    PruneSets,
    SessionState,
    SessionStats,
    TodoItem,
)
from lethe.store.migrations import SCHEMA_VERSION, migrate

_logger = structlog.get_logger("lethe.store")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class PersistedState(BaseModel):
    """On-disk document for one session (schema version 2)."""

    version: int = SCHEMA_VERSION
    session_id: str
    session_name: str | None = None
    last_updated: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    prune: PruneSets
    stats: SessionStats
    hashes: list[HashEntry] = Field(default_factory=list)
    cursors: Cursors = Field(default_factory=Cursors)
    discard_history: list[DiscardRecord] = Field(default_factory=list)
    todos: list[TodoItem] = Field(default_factory=list)
    distillations: dict[str, str] = Field(default_factory=dict)
    rewritten: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_state(cls, state: SessionState, session_name: str | None = None) -> PersistedState:
        if state.session_id is None:
            raise ValueError("cannot persist a state without a session id")
        return cls(
            session_id=state.session_id,
            session_name=session_name,
            prune=state.prune.model_copy(deep=True),
            stats=state.stats.model_copy(deep=True),
            hashes=[entry.model_copy() for entry in state.hashes],
            cursors=state.cursors.model_copy(deep=True),
            discard_history=list(state.discard_history),
            todos=[item.model_copy() for item in state.todos],
            distillations=dict(state.distillations),
            rewritten=dict(state.rewritten),
        )

    def apply_to(self, state: SessionState) -> None:
        """Copy persisted fields onto a freshly reset ``state``."""
        state.prune = self.prune
        state.stats = self.stats
        state.hashes = HashRegistry.from_entries(self.hashes)
        state.cursors = self.cursors
        state.discard_history = self.discard_history
        state.todos = self.todos
        state.distillations = self.distillations
        state.rewritten = self.rewritten


class StatePersistence:
    """
    Per-session JSON documents in a single directory.

    Each instance owns its write locks; share one instance per process
    (through the engine) so concurrent saves of one session are ordered.
    """

    def __init__(self, storage_dir: str | Path) -> None:
        self.storage_dir = Path(storage_dir).expanduser()
        self._write_locks: dict[str, asyncio.Lock] = {}

    def path_for(self, session_id: str) -> Path:
        return self.storage_dir / f"{_UNSAFE_CHARS.sub('_', session_id)}.json"

    def write_lock(self, path: Path) -> asyncio.Lock:
        """Return the write-serialisation lock for ``path``, creating it on first use."""
        key = str(path)
        lock = self._write_locks.get(key)
        if lock is None:
            lock = self._write_locks[key] = asyncio.Lock()
        return lock

    async def save(self, state: SessionState, session_name: str | None = None) -> bool:
        """
        Persist ``state`` atomically.

        Returns:
            True on success. False when the state has no session id or the
            write failed; the in-memory state stays authoritative until the
            next successful save.
        """
        if not state.session_id:
            return False
        session_id = state.session_id
        path = self.path_for(session_id)
        try:
            # Snapshot on the event-loop thread before handing off to a worker.
            document = PersistedState.from_state(state, session_name).model_dump(mode="json")
            async with self.write_lock(path):
                await asyncio.to_thread(_write_json_atomic, path, document)
        except Exception as exc:
            error = PersistenceError(session_id, "save", exc)
            _logger.error("state_save_failed", session_id=session_id, error=str(error))
            return False
        _logger.info(
            "state_saved",
            session_id=session_id,
            total_prune_tokens=state.stats.total_prune_tokens,
        )
        return True

    async def load(self, session_id: str) -> PersistedState | None:
        """
        Load the persisted state for ``session_id``.

        Missing files, unreadable JSON, legacy or unknown schema versions and
        structurally invalid documents all yield None.
        """
        path = self.path_for(session_id)
        try:
            raw = await asyncio.to_thread(_read_json, path)
        except Exception as exc:
            error = PersistenceError(session_id, "load", exc)
            _logger.warning("state_load_failed", session_id=session_id, error=str(error))
            return None
        if raw is None:
            return None

        doc = migrate(raw, session_id)
        if doc is None:
            return None
        try:
            persisted = PersistedState.model_validate(doc)
        except SchemaValidationError as exc:
            _logger.warning(
                "state_rejected", session_id=session_id, reason="schema", error=str(exc)
            )
            return None
        _logger.info("state_loaded", session_id=session_id)
        return persisted

    async def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        async with self.write_lock(path):
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                return False
        return True

    async def list_sessions(self) -> list[str]:
        """Return the session ids that have a document on disk."""
        paths = await asyncio.to_thread(_list_documents, self.storage_dir)
        return [path.stem for path in paths]

    async def load_all_stats(self) -> AggregatedStats:
        """
        Sum savings across every persisted session.

        Unreadable or rejected documents are skipped.
        """
        totals = AggregatedStats()
        for session_id in await self.list_sessions():
            persisted = await self.load(session_id)
            if persisted is None:
                continue
            totals.total_tokens += persisted.stats.total_prune_tokens
            totals.total_tools += len(persisted.prune.tool_ids)
            totals.session_count += 1
        return totals


def _read_json(path: Path) -> Any | None:
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def _list_documents(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(directory.glob("*.json"))


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON atomically via tempfile + fsync + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(data, indent=2, ensure_ascii=False))
            f.flush()
            os.fsync(f.fileno())
        Path(tmp).replace(path)
    except BaseException:
        try:
            Path(tmp).unlink()
        except OSError:
            pass
        raise

"""Content-addressed registry mapping short hashes to prunable units."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import structlog
from pydantic import BaseModel

from lethe.hashing.digest import part_hash

_logger = structlog.get_logger("lethe.hashing")

_TYPE_ALIASES: dict[str, str] = {"thinking": "reasoning"}


def normalize_type(unit_type: str) -> str:
    """
    Normalize a unit type name.

    Lower-cases, drops a trailing ``_hash`` suffix and maps ``thinking`` to
    ``reasoning`` so ``"thinking_hash"``, ``"Reasoning"`` and ``"reasoning"``
    all address the same family.
    """
    lowered = unit_type.strip().lower()
    if lowered.endswith("_hash"):
        lowered = lowered[: -len("_hash")]
    return _TYPE_ALIASES.get(lowered, lowered)


class HashEntry(BaseModel):
    """Identity record of one addressable unit."""

    type: str
    hash: str
    id: str
    """Tool call id, ``messageId:partIndex`` or a segment address."""
    tool_name: str | None = None
    preview: str = ""
    start: int | None = None
    end: int | None = None
    tag_name: str | None = None


class HashRegistry:
    """
    Bidirectional map between short hashes and unit ids.

    Invariants:

    - Registration is idempotent per ``(type, id)``: a unit keeps the hash it
      was first given, even if its content changes later.
    - A hash maps to exactly one entry. When two distinct units derive the
      same 6-character value, the later one gets a ``_2``, ``_3`` … suffix.

    Example::

        registry = HashRegistry()
        h = registry.register("tool", "call_42", "read:call_42", tool_name="read")
        registry.lookup(h).id  # "call_42"
    """

    def __init__(self) -> None:
        self._entries: dict[str, HashEntry] = {}
        self._by_id: dict[tuple[str, str], str] = {}

    def register(
        self,
        unit_type: str,
        unit_id: str,
        content: str | None = None,
        *,
        tool_name: str | None = None,
        preview: str | None = None,
        start: int | None = None,
        end: int | None = None,
        tag_name: str | None = None,
    ) -> str:
        """
        Return the hash for ``(unit_type, unit_id)``, assigning one if needed.

        Args:
            unit_type: Unit family (``tool``, ``message``, ``reasoning``, ``segment``).
            unit_id: The underlying id (call id or part address).
            content: Text to digest. Falls back to ``unit_id`` when empty or None.
            tool_name: Tool name for tool units.
            preview: Short display text; defaults to the first 15 characters of content.
            start: Segment start offset.
            end: Segment end offset.
            tag_name: Segment tag name.

        Returns:
            The (possibly suffixed) hash string.
        """
        kind = normalize_type(unit_type)
        existing = self._by_id.get((kind, unit_id))
        if existing is not None:
            return existing

        source = content if content else unit_id
        base = part_hash(source)
        candidate = base
        suffix = 2
        while candidate in self._entries:
            candidate = f"{base}_{suffix}"
            suffix += 1
        if candidate != base:
            _logger.debug("hash_collision", base=base, assigned=candidate, unit_id=unit_id)

        self._entries[candidate] = HashEntry(
            type=kind,
            hash=candidate,
            id=unit_id,
            tool_name=tool_name,
            preview=preview if preview is not None else source[:15],
            start=start,
            end=end,
            tag_name=tag_name,
        )
        self._by_id[(kind, unit_id)] = candidate
        return candidate

    def lookup(self, hash_value: str) -> HashEntry | None:
        """Return the entry for ``hash_value``, or None when unknown."""
        return self._entries.get(hash_value.strip().lower())

    def hash_for(self, unit_type: str, unit_id: str) -> str | None:
        return self._by_id.get((normalize_type(unit_type), unit_id))

    def remove(self, hash_value: str) -> HashEntry | None:
        entry = self._entries.pop(hash_value.strip().lower(), None)
        if entry is not None:
            self._by_id.pop((entry.type, entry.id), None)
        return entry

    def remove_id(self, unit_type: str, unit_id: str) -> HashEntry | None:
        hash_value = self.hash_for(unit_type, unit_id)
        if hash_value is None:
            return None
        return self.remove(hash_value)

    def entries(self, unit_type: str | None = None) -> list[HashEntry]:
        """Return entries in registration order, optionally filtered by type."""
        if unit_type is None:
            return list(self._entries.values())
        kind = normalize_type(unit_type)
        return [entry for entry in self._entries.values() if entry.type == kind]

    def display(self, hash_value: str) -> str:
        """Short human label for a hash: the tool name, or the content preview."""
        entry = self.lookup(hash_value)
        if entry is None:
            return hash_value
        if entry.tool_name:
            return f"{entry.tool_name} ({entry.hash})"
        return f"{entry.type}: {entry.preview}"

    @classmethod
    def from_entries(cls, entries: Iterable[HashEntry]) -> HashRegistry:
        """Rebuild a registry from persisted entries, keeping their hashes verbatim."""
        registry = cls()
        for entry in entries:
            registry._entries[entry.hash] = entry
            registry._by_id[(entry.type, entry.id)] = entry.hash
        return registry

    def __contains__(self, hash_value: object) -> bool:
        return isinstance(hash_value, str) and hash_value.strip().lower() in self._entries

    def __iter__(self) -> Iterator[HashEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __deepcopy__(self, memo: dict[int, object]) -> HashRegistry:
        return HashRegistry.from_entries(entry.model_copy() for entry in self._entries.values())

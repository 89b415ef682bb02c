"""
One-time upgrades of persisted session documents.

Every document written by :class:`~lethe.store.persistence.StatePersistence`
carries an integer ``version``. On load, :func:`migrate` walks the document
forward one version at a time until it reaches :data:`SCHEMA_VERSION`.

Documents that cannot be upgraded safely are rejected (``None``) and the
session starts from empty state:

- unversioned documents with camelCase keys (``hashToCallId``, ``toolIds``),
  written before the versioned schema existed;
- documents from a newer release (``version > SCHEMA_VERSION``).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

_logger = structlog.get_logger("lethe.store")

SCHEMA_VERSION = 2

_LEGACY_KEYS = frozenset(
    {"hashToCallId", "callIdToHash", "hashToMessagePart", "messagePartToHash", "lastUpdated"}
)


def _v1_to_v2(doc: dict[str, Any]) -> dict[str, Any]:
    """
    v1 stored one ``{hash: id}`` map per unit type and had no reasoning or
    segment prune sets. v2 stores a flat list of hash entries.
    """
    entries: list[dict[str, Any]] = []
    for unit_type, mapping in (doc.pop("hashes", None) or {}).items():
        if not isinstance(mapping, dict):
            continue
        for hash_value, unit_id in mapping.items():
            entries.append({"type": unit_type, "hash": hash_value, "id": unit_id})
    doc["hashes"] = entries

    prune = doc.get("prune")
    if isinstance(prune, dict):
        prune.setdefault("reasoning_part_ids", [])
        prune.setdefault("segment_ids", [])
    doc["version"] = 2
    return doc


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _v1_to_v2,
}


def is_legacy(doc: dict[str, Any]) -> bool:
    """True for the pre-versioning camelCase layout."""
    if "version" not in doc:
        return True
    prune = doc.get("prune")
    return bool(_LEGACY_KEYS & doc.keys()) or (isinstance(prune, dict) and "toolIds" in prune)


def has_required_shape(doc: dict[str, Any]) -> bool:
    """Minimal structure every loadable document must have."""
    prune = doc.get("prune")
    return (
        isinstance(prune, dict)
        and isinstance(prune.get("tool_ids"), list)
        and isinstance(doc.get("stats"), dict)
    )


def migrate(doc: Any, session_id: str = "") -> dict[str, Any] | None:
    """
    Upgrade ``doc`` to :data:`SCHEMA_VERSION`.

    Returns:
        The upgraded document, or None when it must be treated as absent.
    """
    if not isinstance(doc, dict):
        _logger.warning("state_rejected", session_id=session_id, reason="not_an_object")
        return None
    if is_legacy(doc):
        _logger.warning("state_rejected", session_id=session_id, reason="legacy_format")
        return None

    version = doc.get("version")
    if not isinstance(version, int) or version > SCHEMA_VERSION or version < 1:
        _logger.warning(
            "state_rejected", session_id=session_id, reason="unsupported_version", version=version
        )
        return None

    while version < SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            _logger.warning(
                "state_rejected", session_id=session_id, reason="no_migration", version=version
            )
            return None
        doc = step(doc)
        _logger.info("state_migrated", session_id=session_id, from_version=version)
        version = doc["version"]

    if not has_required_shape(doc):
        _logger.warning("state_rejected", session_id=session_id, reason="invalid_shape")
        return None
    return doc

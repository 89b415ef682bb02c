"""Lethe persistence layer."""

from lethe.store.migrations import SCHEMA_VERSION, migrate
from lethe.store.persistence import PersistedState, StatePersistence

__all__ = ["PersistedState", "SCHEMA_VERSION", "StatePersistence", "migrate"]

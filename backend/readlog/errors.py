"""
Error types raised by the timeline and stats services.

Routers translate these into HTTP responses; the rebuild job catches
``OrphanedReference`` and ``StorageError`` per entity and keeps going.
"""

import aiosqlite


class ReadlogError(Exception):
    """Base class for readlog service errors."""


class ValidationError(ReadlogError, ValueError):
    """A snapshot, payload or cursor is malformed or incomplete."""


class EntityNotFound(ReadlogError, LookupError):
    """A mutation referenced an entity that does not exist."""

    def __init__(self, entity_type: str, entity_id: int):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class OrphanedReference(ReadlogError):
    """A timeline event points at an entity that no longer exists."""

    def __init__(self, entity_type: str, entity_id: int):
        super().__init__(f"{entity_type} {entity_id} no longer exists")
        self.entity_type = entity_type
        self.entity_id = entity_id


class StorageError(ReadlogError):
    """An I/O or constraint failure in the backing store."""

    @classmethod
    def wrap(cls, exc: aiosqlite.Error, context: str) -> "StorageError":
        return cls(f"{context}: {exc}")


class ConflictError(StorageError):
    """A write violated a uniqueness or foreign key constraint."""

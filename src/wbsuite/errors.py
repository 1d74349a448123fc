from __future__ import annotations


class WorldbookError(Exception):
    """Base class for every failure raised by wbsuite."""


class NotFoundError(WorldbookError, LookupError):
    """Raised when a referenced book, snapshot or panel binding is absent."""


class ValidationError(WorldbookError, ValueError):
    """Raised for malformed names, empty selections and duplicate names."""


class StorageError(WorldbookError, RuntimeError):
    """Raised when the storage collaborator fails to read or write."""


class PartialMigrationWarning(UserWarning):
    """Emitted when a rename could not rewrite every binding reference."""


__all__ = [
    "WorldbookError",
    "NotFoundError",
    "ValidationError",
    "StorageError",
    "PartialMigrationWarning",
]

from .bindings import BindingManager, BindingScope, BindingSnapshot, RenameResult
from .config import Suite, SuiteConfig, load_config
from .entries import Position, WorldEntry, normalize_entries
from .errors import (
    NotFoundError,
    PartialMigrationWarning,
    StorageError,
    ValidationError,
    WorldbookError,
)
from .patches import AdjustNumber, EntryPatch, ToggleFlag
from .sorting import score, sort_entries
from .stitch import StitchEngine, TransferResult
from .storage import JsonBookStorage
from .store import EntryStore

__all__ = [
    "WorldEntry",
    "Position",
    "normalize_entries",
    "score",
    "sort_entries",
    "EntryPatch",
    "ToggleFlag",
    "AdjustNumber",
    "EntryStore",
    "JsonBookStorage",
    "BindingManager",
    "BindingScope",
    "BindingSnapshot",
    "RenameResult",
    "StitchEngine",
    "TransferResult",
    "Suite",
    "SuiteConfig",
    "load_config",
    "WorldbookError",
    "NotFoundError",
    "ValidationError",
    "StorageError",
    "PartialMigrationWarning",
]

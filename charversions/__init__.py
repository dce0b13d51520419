"""
charversions/ -- Structural diffing and version history for character cards.

Submodules:
    comparator          Field normalisation and equality
    text_diff           Line and word diffs
    entry_matcher       Fuzzy lorebook entry matching
    diff_engine         Field-by-field document comparison
    snapshot_store      Snapshots, backups and identities over a storage backend
    version_controller  Diff / restore / undo on live documents
    batch               Windowed batch runner
"""

from charversions.diff_engine import DocumentDiffEngine, FieldDiff, compare_documents
from charversions.errors import (
    ApplyError,
    CharVersionsError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from charversions.snapshot_store import SnapshotStore
from charversions.storage import FileStorage, MemoryStorage
from charversions.version_controller import VersionController

__version__ = "0.1.0"

__all__ = [
    "ApplyError",
    "CharVersionsError",
    "DocumentDiffEngine",
    "FieldDiff",
    "FileStorage",
    "MemoryStorage",
    "NotFoundError",
    "SnapshotStore",
    "StorageError",
    "ValidationError",
    "VersionController",
    "compare_documents",
]

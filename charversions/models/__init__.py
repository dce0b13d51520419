"""
charversions/models/ -- Pydantic v2 records and document shape validators.

Submodules:
    records     Persisted store records (Snapshot, Backup, IdentityRecord, StoreIndex).
    validators  jsonschema checks for incoming document data.
"""

from charversions.models.records import (
    Backup,
    IdentityRecord,
    IndexEntry,
    Snapshot,
    SnapshotSource,
    StoreIndex,
)

__all__ = [
    "Backup",
    "IdentityRecord",
    "IndexEntry",
    "Snapshot",
    "SnapshotSource",
    "StoreIndex",
]

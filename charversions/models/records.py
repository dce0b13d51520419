"""
charversions/models/records.py -- Persisted snapshot-store records.

Two kinds of blob make up a store:

    _clv_index.json         one StoreIndex for the whole store
    _clv_<version_uid>.json one IdentityRecord per tracked document

Records are serialised with ``model_dump_json`` and parsed back with
``model_validate_json``; unknown keys written by newer versions are
kept rather than dropped.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SnapshotSource(str, Enum):
    """Why a snapshot exists."""

    LOCAL = "local"
    AUTO_BACKUP = "auto_backup"
    EXTERNAL_RESTORE = "external_restore"


class Snapshot(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    label: str = ""
    source: SnapshotSource = SnapshotSource.LOCAL
    timestamp: int = 0
    display_name: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class Backup(BaseModel):
    """Single-slot pre-restore copy of a document's field data."""

    model_config = ConfigDict(extra="allow")

    timestamp: int = 0
    data: dict[str, Any] = Field(default_factory=dict)


class IdentityRecord(BaseModel):
    """Everything stored for one document identity."""

    model_config = ConfigDict(extra="allow")

    version_uid: str
    display_name: str = ""
    current_key: str | None = None
    next_id: int = 1
    snapshots: list[Snapshot] = Field(default_factory=list)
    backup: Backup | None = None

    @property
    def is_empty(self) -> bool:
        return not self.snapshots and self.backup is None

    def find(self, snapshot_id: int) -> Snapshot | None:
        for snap in self.snapshots:
            if snap.id == snapshot_id:
                return snap
        return None


class IndexEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    display_name: str = ""
    current_key: str | None = None
    snapshot_count: int = 0
    last_modified: int = 0


class StoreIndex(BaseModel):
    """Master lookup: identity -> summary, and storage key -> identity."""

    model_config = ConfigDict(extra="allow")

    version: int = 1
    documents: dict[str, IndexEntry] = Field(default_factory=dict)
    key_map: dict[str, str] = Field(default_factory=dict)

    def drop_keys_for(self, version_uid: str, keep: str | None = None) -> None:
        """Remove reverse-map entries pointing at *version_uid* (except *keep*)."""
        for key in [k for k, uid in self.key_map.items() if uid == version_uid and k != keep]:
            del self.key_map[key]

"""
charversions/snapshot_store.py -- Per-document snapshot and backup store.

Persists, through any ``StorageBackend``, a flat namespace of JSON blobs:

    _clv_index.json          StoreIndex  (identity summaries + key map)
    _clv_<version_uid>.json  IdentityRecord (snapshots + single backup)

Every mutation builds the new record and index off to the side, writes
the record blob, then the index blob.  If the index write fails the old
record bytes are written back and the in-memory caches are left alone,
so the record and the index never disagree.  A record that ends up with
no snapshots and no backup is deleted along with its index entry.

Usage::

    from charversions.snapshot_store import SnapshotStore
    from charversions.storage import MemoryStorage

    store = SnapshotStore(MemoryStorage(), max_auto_backups=10)
    uid = store.ensure_identity(doc)
    snap_id = store.save_snapshot(uid, "Before edit", "auto_backup", data)
    store.list_snapshots(uid)       # newest first
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
from typing import Any, Callable

import pydantic

from charversions.document import (
    IDENTITY_PATH,
    DocumentWriter,
    InMemoryDocumentWriter,
    card_data,
    get_identity,
    storage_key,
)
from charversions.errors import NotFoundError, StorageError, ValidationError
from charversions.models import (
    Backup,
    IdentityRecord,
    IndexEntry,
    Snapshot,
    SnapshotSource,
    StoreIndex,
)
from charversions.storage import StorageBackend
from charversions.utils import canonical_json, deep_copy, now_ms

logger = logging.getLogger(__name__)

INDEX_NAME = "_clv_index.json"
RECORD_PREFIX = "_clv_"
UID_LENGTH = 16
_UID_ALPHABET = string.ascii_letters + string.digits


def generate_version_uid() -> str:
    """Return a fresh 16-character alphanumeric identity token."""
    return "".join(secrets.choice(_UID_ALPHABET) for _ in range(UID_LENGTH))


def record_name(version_uid: str) -> str:
    return f"{RECORD_PREFIX}{version_uid}.json"


class SnapshotStore:
    """Snapshot, backup and identity bookkeeping over a storage backend.

    Parameters
    ----------
    storage : StorageBackend
        Where blobs are kept.
    writer : DocumentWriter, optional
        Used to persist a newly allocated identity into its document.
        Defaults to an in-place ``InMemoryDocumentWriter``.
    max_auto_backups : int
        Cap on ``auto_backup`` snapshots per identity; ``0`` disables it.
    clock : callable
        Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        storage: StorageBackend,
        writer: DocumentWriter | None = None,
        max_auto_backups: int = 10,
        clock: Callable[[], int] = now_ms,
    ):
        if max_auto_backups < 0:
            raise ValidationError("max_auto_backups must be zero or a positive number.")
        self.storage = storage
        self.writer = writer if writer is not None else InMemoryDocumentWriter()
        self.max_auto_backups = max_auto_backups
        self._clock = clock
        self._lock = threading.RLock()
        self._index: StoreIndex | None = None
        self._records: dict[str, IdentityRecord] = {}
        self._ephemeral: set[str] = set()
        self._session_uids: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Backend access
    # ------------------------------------------------------------------

    def _read(self, name: str) -> bytes | None:
        try:
            return self.storage.read(name)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Could not read '{name}'. Technical detail: {exc}") from exc

    def _write(self, name: str, payload: bytes) -> None:
        try:
            self.storage.write(name, payload)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Could not save '{name}'. Technical detail: {exc}") from exc

    def _delete(self, name: str) -> None:
        try:
            self.storage.delete(name)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Could not delete '{name}'. Technical detail: {exc}") from exc

    # ------------------------------------------------------------------
    # Cache loading
    # ------------------------------------------------------------------

    def _load_index(self) -> StoreIndex:
        if self._index is None:
            raw = self._read(INDEX_NAME)
            if raw is None:
                self._index = StoreIndex()
            else:
                try:
                    self._index = StoreIndex.model_validate_json(raw)
                except pydantic.ValidationError as exc:
                    logger.warning("Snapshot index is unreadable, starting a new one: %s", exc)
                    self._index = StoreIndex()
        return self._index

    def _load_record(self, version_uid: str) -> IdentityRecord | None:
        if version_uid in self._records:
            return self._records[version_uid]
        raw = self._read(record_name(version_uid))
        if raw is None:
            return None
        try:
            record = IdentityRecord.model_validate_json(raw)
        except pydantic.ValidationError as exc:
            raise StorageError(
                f"The snapshot record for '{version_uid}' is damaged and could not be "
                f"read. Technical detail: {exc}"
            ) from exc
        self._records[version_uid] = record
        return record

    def _editable_record(self, version_uid: str) -> IdentityRecord:
        record = self._load_record(version_uid)
        if record is None:
            return IdentityRecord(version_uid=version_uid)
        return record.model_copy(deep=True)

    def _existing_record(self, version_uid: str) -> IdentityRecord:
        record = self._load_record(version_uid)
        if record is None:
            raise NotFoundError(f"No saved versions exist for '{version_uid}'.")
        return record.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _reindexed(self, version_uid: str, record: IdentityRecord | None) -> StoreIndex:
        index = self._load_index().model_copy(deep=True)
        if record is None:
            index.documents.pop(version_uid, None)
            index.drop_keys_for(version_uid)
            return index
        index.documents[version_uid] = IndexEntry(
            display_name=record.display_name,
            current_key=record.current_key,
            snapshot_count=len(record.snapshots),
            last_modified=self._clock(),
        )
        if record.current_key:
            index.drop_keys_for(version_uid, keep=record.current_key)
            index.key_map[record.current_key] = version_uid
        return index

    def _commit(self, version_uid: str, record: IdentityRecord | None) -> None:
        """Persist *record* (``None`` removes it) and the matching index."""
        name = record_name(version_uid)
        index = self._reindexed(version_uid, record)
        previous = self._read(name)

        if record is None:
            self._delete(name)
        else:
            self._write(name, record.model_dump_json().encode("utf-8"))

        try:
            self._write(INDEX_NAME, index.model_dump_json().encode("utf-8"))
        except StorageError:
            self._restore_blob(name, previous)
            raise

        self._index = index
        if record is None:
            self._records.pop(version_uid, None)
            logger.debug("Removed empty snapshot record for %s", version_uid)
        else:
            self._records[version_uid] = record

    def _restore_blob(self, name: str, previous: bytes | None) -> None:
        try:
            if previous is None:
                self._delete(name)
            else:
                self._write(name, previous)
        except StorageError:
            logger.exception("Could not roll back '%s' after a failed index write", name)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def resolve_identity(self, doc: dict) -> tuple[str, bool]:
        """Return ``(version_uid, is_new)`` for *doc* without writing anything.

        An identity already stored in the document wins, then a session
        token, then the index entry for the document's storage key, and
        failing those a freshly generated token.  ``is_new`` is True when
        the token still has to be saved with ``persist_identity``.
        """
        card_data(doc)
        key = storage_key(doc)
        with self._lock:
            existing = get_identity(doc)
            if existing:
                return existing, False
            session_uid = self._session_uids.get(key or f"object:{id(doc)}")
            if session_uid:
                return session_uid, False
            return (key and self.lookup_identity(key)) or generate_version_uid(), True

    def persist_identity(self, doc: dict, version_uid: str) -> None:
        """Write *version_uid* into *doc*.

        If the writer fails the token is kept for this session only and
        marked ephemeral; a warning is logged instead of raising.
        """
        key = storage_key(doc)
        with self._lock:
            try:
                self.writer.apply_updates(doc, {IDENTITY_PATH: version_uid})
            except Exception as exc:
                logger.warning(
                    "Could not save version id %s into '%s'; using it for this session "
                    "only: %s", version_uid, key or "document", exc,
                )
                self._ephemeral.add(version_uid)
                self._session_uids[key or f"object:{id(doc)}"] = version_uid
            else:
                logger.info("Assigned version id %s to '%s'", version_uid, key or "document")
            self._remember_key(version_uid, key)

    def ensure_identity(self, doc: dict) -> str:
        """Return the stable identity of *doc*, allocating and saving one if needed."""
        with self._lock:
            version_uid, is_new = self.resolve_identity(doc)
            if is_new:
                self.persist_identity(doc, version_uid)
            else:
                self._remember_key(version_uid, storage_key(doc))
        return version_uid

    def _remember_key(self, version_uid: str, key: str | None) -> None:
        if not key:
            return
        index = self._load_index()
        if index.key_map.get(key) == version_uid:
            return
        updated = index.model_copy(deep=True)
        updated.drop_keys_for(version_uid)
        updated.key_map[key] = version_uid
        self._write(INDEX_NAME, updated.model_dump_json().encode("utf-8"))
        self._index = updated

    def find_identity(self, doc: dict) -> str | None:
        """Return *doc*'s identity if one is known, without allocating."""
        existing = get_identity(doc)
        if existing:
            return existing
        key = storage_key(doc)
        with self._lock:
            session_uid = self._session_uids.get(key or f"object:{id(doc)}")
            if session_uid:
                return session_uid
            return self._load_index().key_map.get(key) if key else None

    def is_ephemeral(self, version_uid: str) -> bool:
        """True when *version_uid* could not be saved into its document."""
        return version_uid in self._ephemeral

    def lookup_identity(self, key: str) -> str | None:
        with self._lock:
            return self._load_index().key_map.get(key)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def save_snapshot(
        self,
        version_uid: str,
        label: str,
        source: SnapshotSource | str,
        data: dict[str, Any],
        *,
        display_name: str | None = None,
        current_key: str | None = None,
    ) -> int:
        """Record a snapshot of *data* and return its id.

        An ``auto_backup`` identical to the newest existing ``auto_backup``
        is not stored again; the existing id is returned.  After a new
        ``auto_backup`` the oldest ones are pruned down to the cap.
        """
        _check_uid(version_uid)
        source = _check_source(source)
        if not isinstance(data, dict):
            raise ValidationError("Snapshot data must be a mapping of field values.")

        with self._lock:
            record = self._editable_record(version_uid)
            if display_name:
                record.display_name = display_name
            if current_key:
                record.current_key = current_key

            if source is SnapshotSource.AUTO_BACKUP:
                latest = _latest_auto_backup(record)
                if latest is not None and canonical_json(latest.data) == canonical_json(data):
                    logger.debug(
                        "Skipping duplicate auto backup for %s (same as #%d)",
                        version_uid, latest.id,
                    )
                    return latest.id

            snap = Snapshot(
                id=record.next_id,
                label=label or "",
                source=source,
                timestamp=self._clock(),
                display_name=record.display_name,
                data=deep_copy(data),
            )
            record.next_id += 1
            record.snapshots.append(snap)

            if source is SnapshotSource.AUTO_BACKUP:
                self._prune_auto_backups(record)

            self._commit(version_uid, record)
            return snap.id

    def _prune_auto_backups(self, record: IdentityRecord) -> None:
        if self.max_auto_backups <= 0:
            return
        autos = [s.id for s in record.snapshots if s.source is SnapshotSource.AUTO_BACKUP]
        excess = len(autos) - self.max_auto_backups
        if excess <= 0:
            return
        doomed = set(sorted(autos)[:excess])
        record.snapshots = [s for s in record.snapshots if s.id not in doomed]
        logger.debug("Pruned %d old auto backup(s) for %s", excess, record.version_uid)

    def list_snapshots(self, version_uid: str) -> list[Snapshot]:
        """Return snapshots newest first.  Unknown identities give ``[]``."""
        with self._lock:
            record = self._load_record(version_uid)
            if record is None:
                return []
            ordered = sorted(record.snapshots, key=lambda s: (s.timestamp, s.id), reverse=True)
            return [s.model_copy(deep=True) for s in ordered]

    def get_snapshot(self, version_uid: str, snapshot_id: int) -> Snapshot:
        with self._lock:
            record = self._load_record(version_uid)
            snap = record.find(snapshot_id) if record is not None else None
            if snap is None:
                raise NotFoundError(f"Snapshot #{snapshot_id} was not found.")
            return snap.model_copy(deep=True)

    def delete_snapshot(self, version_uid: str, snapshot_id: int) -> None:
        with self._lock:
            record = self._existing_record(version_uid)
            if record.find(snapshot_id) is None:
                raise NotFoundError(f"Snapshot #{snapshot_id} was not found.")
            record.snapshots = [s for s in record.snapshots if s.id != snapshot_id]
            self._commit(version_uid, None if record.is_empty else record)

    def rename_snapshot(self, version_uid: str, snapshot_id: int, label: str) -> None:
        with self._lock:
            record = self._existing_record(version_uid)
            snap = record.find(snapshot_id)
            if snap is None:
                raise NotFoundError(f"Snapshot #{snapshot_id} was not found.")
            snap.label = label
            self._commit(version_uid, record)

    # ------------------------------------------------------------------
    # Backup slot
    # ------------------------------------------------------------------

    def save_backup(
        self,
        version_uid: str,
        data: dict[str, Any],
        *,
        display_name: str | None = None,
        current_key: str | None = None,
    ) -> None:
        """Store *data* in the single backup slot, replacing any previous one."""
        _check_uid(version_uid)
        if not isinstance(data, dict):
            raise ValidationError("Backup data must be a mapping of field values.")
        with self._lock:
            record = self._editable_record(version_uid)
            if display_name:
                record.display_name = display_name
            if current_key:
                record.current_key = current_key
            if record.backup is not None:
                logger.debug("Overwriting pending backup for %s", version_uid)
            record.backup = Backup(timestamp=self._clock(), data=deep_copy(data))
            self._commit(version_uid, record)

    def get_backup(self, version_uid: str) -> Backup | None:
        with self._lock:
            record = self._load_record(version_uid)
            if record is None or record.backup is None:
                return None
            return record.backup.model_copy(deep=True)

    def clear_backup(self, version_uid: str) -> bool:
        """Empty the backup slot.  Returns False if there was nothing to clear."""
        with self._lock:
            record = self._load_record(version_uid)
            if record is None or record.backup is None:
                return False
            record = record.model_copy(deep=True)
            record.backup = None
            self._commit(version_uid, None if record.is_empty else record)
            return True

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_documents(self) -> dict[str, IndexEntry]:
        """Return the index summary of every tracked identity."""
        with self._lock:
            return {
                uid: entry.model_copy()
                for uid, entry in self._load_index().documents.items()
            }


def _check_uid(version_uid: Any) -> None:
    if not isinstance(version_uid, str) or not version_uid:
        raise ValidationError("A version id must be a non-empty string.")


def _check_source(source: SnapshotSource | str) -> SnapshotSource:
    try:
        return SnapshotSource(source)
    except ValueError as exc:
        allowed = ", ".join(s.value for s in SnapshotSource)
        raise ValidationError(
            f"'{source}' is not a snapshot source. Use one of: {allowed}."
        ) from exc


def _latest_auto_backup(record: IdentityRecord) -> Snapshot | None:
    autos = [s for s in record.snapshots if s.source is SnapshotSource.AUTO_BACKUP]
    return max(autos, key=lambda s: s.id) if autos else None

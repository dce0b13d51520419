"""
charversions/version_controller.py -- Diff, restore and undo for live documents.

Ties the ``DocumentDiffEngine`` to the ``SnapshotStore``.  A restore is a
three-step protocol:

    1. save the document's current fields as the single backup slot and
       as an extra ``auto_backup`` snapshot (abort on any failure, the
       document is not touched);
    2. write the selected fields from the source into the document;
    3. record where the restored data came from.

``undo`` puts the backup back and clears the slot.  The ``auto_backup``
snapshot taken by the restore stays behind as an audit trail.

Usage::

    from charversions.version_controller import VersionController

    controller = VersionController(store)
    result = controller.diff_against_source(doc, remote_data)
    if not result.identical:
        controller.restore(doc, remote_data, ["description", "tags"])
    controller.undo(doc)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from charversions.config import Settings
from charversions.diff_engine import DocumentDiffEngine, FieldDiff
from charversions.document import (
    PROVENANCE_PATH,
    DocumentWriter,
    card_data,
    display_name,
    extract_document_data,
    storage_key,
)
from charversions.errors import ApplyError, CharVersionsError, NotFoundError, ValidationError
from charversions.models import Backup, SnapshotSource
from charversions.models.validators import validate_document
from charversions.schema import CARD_SCHEMA, FieldSpec, snapshot_roots
from charversions.snapshot_store import SnapshotStore
from charversions.utils import deep_copy, format_timestamp, get_nested_value, now_iso, now_ms

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class DiffResult:
    diffs: list[FieldDiff] = field(default_factory=list)
    identical: bool = True


@dataclass
class RestoreResult:
    """What a restore did, enough for a host to report it and offer undo."""
    version_uid: str
    applied_fields: list[str]
    backup_snapshot_id: int
    restored_snapshot_id: int | None = None
    ephemeral: bool = False


class VersionController:
    """High-level version operations on a document handle.

    Parameters
    ----------
    store : SnapshotStore
        Snapshot and backup storage.
    writer : DocumentWriter, optional
        Writes field updates into documents (default: the store's writer).
    schema : sequence of FieldSpec, optional
        Field schema (default: ``CARD_SCHEMA``).
    settings : Settings, optional
        Behaviour toggles such as ``auto_snapshot_on_edit``.
    clock : callable, optional
        Epoch-millisecond clock used for labels (default: the wall clock).
    """

    def __init__(
        self,
        store: SnapshotStore,
        writer: DocumentWriter | None = None,
        schema: Sequence[FieldSpec] | None = None,
        settings: Settings | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.store = store
        self.writer = writer if writer is not None else store.writer
        self.schema = tuple(schema) if schema is not None else CARD_SCHEMA
        self.settings = settings or Settings()
        self._clock = clock or now_ms
        self._engine = DocumentDiffEngine(self.schema)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stamp(self) -> str:
        return format_timestamp(self._clock())

    def _source_fields(self, source_data: Any) -> dict:
        if source_data is None:
            return {}
        if not isinstance(source_data, dict):
            raise ValidationError(
                f"The source version must be a mapping of field values, "
                f"got {type(source_data).__name__}."
            )
        return card_data(source_data)

    def _resolve_fields(self, source: dict, selected: Iterable[str] | None) -> list[str]:
        known = [spec.name for spec in self.schema]
        if selected is None:
            return [
                name for name in known
                if get_nested_value(source, name, _MISSING) is not _MISSING
            ]
        chosen = list(dict.fromkeys(selected))
        unknown = [name for name in chosen if name not in known]
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(unknown)}.")
        return chosen

    def _apply(self, doc: dict, updates: dict[str, Any]) -> None:
        try:
            self.writer.apply_updates(doc, updates)
        except ApplyError:
            raise
        except Exception as exc:
            raise ApplyError(
                f"Could not write {len(updates)} field(s) into the document. "
                f"Technical detail: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    def diff_against_source(
        self, doc: dict, source_data: Any, allowed_fields: Iterable[str] | None = None
    ) -> DiffResult:
        """Compare *doc*'s current fields with *source_data*."""
        diffs = self._engine.compare_documents(
            card_data(doc), self._source_fields(source_data), allowed_fields
        )
        return DiffResult(diffs=diffs, identical=not diffs)

    # ------------------------------------------------------------------
    # Restore / undo
    # ------------------------------------------------------------------

    def restore(
        self,
        doc: dict,
        source_data: Any,
        selected_fields: Iterable[str] | None = None,
        *,
        source_label: str = "",
        source_ref: str | None = None,
    ) -> RestoreResult:
        """Overwrite fields of *doc* with those of *source_data*.

        Parameters
        ----------
        doc : dict
            Live document handle; modified through the writer.
        source_data : dict
            Field data of the version to restore.
        selected_fields : iterable of str, optional
            Field names to restore.  Defaults to every schema field present
            in the source.  A selected field the source lacks is cleared.
        source_label : str
            Human-readable description of the source for provenance.
        source_ref : str, optional
            External version reference; when given the source itself is
            also kept as an ``external_restore`` snapshot.

        Raises
        ------
        ValidationError
            If the source is malformed or a selected field is unknown.
        StorageError
            If the safety backup could not be saved.  *doc* is untouched.
        ApplyError
            If writing the restored fields failed.  The backup remains.
        """
        source = self._source_fields(source_data)
        validate_document(source)
        fields = self._resolve_fields(source, selected_fields)

        version_uid, is_new = self.store.resolve_identity(doc)
        name = display_name(doc)
        key = storage_key(doc)
        current = extract_document_data(doc, self.schema)

        self.store.save_backup(version_uid, current, display_name=name, current_key=key)
        backup_id = self.store.save_snapshot(
            version_uid,
            f"Restore - {self._stamp()}",
            SnapshotSource.AUTO_BACKUP,
            current,
            display_name=name,
            current_key=key,
        )

        # The document is only written once the backup is safe.
        if is_new:
            self.store.persist_identity(doc, version_uid)
        updates = {
            f: deep_copy(get_nested_value(source, f)) for f in fields
        }
        self._apply(doc, updates)
        logger.info(
            "Restored %d field(s) of '%s' from %s",
            len(fields), name, source_label or source_ref or "source",
        )

        result = RestoreResult(
            version_uid=version_uid,
            applied_fields=fields,
            backup_snapshot_id=backup_id,
            ephemeral=self.store.is_ephemeral(version_uid),
        )

        provenance = {
            "restored_from": source_label,
            "restored_at": now_iso(),
            "restored_ref": source_ref,
        }
        try:
            self._apply(doc, {PROVENANCE_PATH: provenance})
        except ApplyError as exc:
            logger.warning("Could not record restore details for '%s': %s", name, exc)

        if source_ref:
            try:
                result.restored_snapshot_id = self.store.save_snapshot(
                    version_uid,
                    f"{source_label or source_ref} (restored)",
                    SnapshotSource.EXTERNAL_RESTORE,
                    extract_document_data(source, self.schema),
                    display_name=name,
                    current_key=key,
                )
            except CharVersionsError as exc:
                logger.warning("Could not keep a copy of restored version %s: %s", source_ref, exc)

        return result

    def undo(self, doc: dict) -> Backup:
        """Put back the fields saved by the last restore.

        Raises
        ------
        NotFoundError
            If there is no pending backup for *doc*.
        ApplyError
            If the fields could not be written; the backup is kept.
        """
        version_uid = self.store.find_identity(doc)
        backup = self.store.get_backup(version_uid) if version_uid else None
        if backup is None:
            raise NotFoundError(f"There is no restore to undo for '{display_name(doc)}'.")

        updates: dict[str, Any] = {
            root: deep_copy(backup.data.get(root)) for root in snapshot_roots(self.schema)
        }
        updates[PROVENANCE_PATH] = None
        self._apply(doc, updates)

        self.store.clear_backup(version_uid)
        logger.info("Undid restore of '%s'", display_name(doc))
        return backup

    def has_pending_undo(self, doc: dict) -> bool:
        version_uid = self.store.find_identity(doc)
        return bool(version_uid) and self.store.get_backup(version_uid) is not None

    # ------------------------------------------------------------------
    # Snapshots of the live document
    # ------------------------------------------------------------------

    def save_current_snapshot(self, doc: dict, label: str = "") -> int:
        """Save *doc*'s current fields as a ``local`` snapshot and return its id."""
        version_uid = self.store.ensure_identity(doc)
        return self.store.save_snapshot(
            version_uid,
            label or f"Snapshot {self._stamp()}",
            SnapshotSource.LOCAL,
            extract_document_data(doc, self.schema),
            display_name=display_name(doc),
            current_key=storage_key(doc),
        )

    def auto_snapshot_before_change(self, doc: dict, reason: str = "edit") -> int | None:
        """Take an ``auto_backup`` snapshot ahead of a change.

        Does nothing when ``auto_snapshot_on_edit`` is off.  A failure is
        logged and reported as ``None`` so the change itself can go ahead.
        """
        if not self.settings.auto_snapshot_on_edit:
            return None
        try:
            version_uid = self.store.ensure_identity(doc)
            return self.store.save_snapshot(
                version_uid,
                f"{reason[:1].upper()}{reason[1:]} - {self._stamp()}",
                SnapshotSource.AUTO_BACKUP,
                extract_document_data(doc, self.schema),
                display_name=display_name(doc),
                current_key=storage_key(doc),
            )
        except CharVersionsError as exc:
            logger.warning("Automatic snapshot before %s failed: %s", reason, exc)
            return None

    def apply_updates(self, doc: dict, source_data: Any, fields: Iterable[str]) -> list[str]:
        """Copy the chosen *fields* from an update source into *doc*.

        An ``auto_backup`` snapshot labelled ``Update - <time>`` is taken
        first (subject to ``auto_snapshot_on_edit``).
        """
        source = self._source_fields(source_data)
        chosen = self._resolve_fields(source, fields)
        if not chosen:
            return []
        self.auto_snapshot_before_change(doc, "update")
        self._apply(doc, {f: deep_copy(get_nested_value(source, f)) for f in chosen})
        logger.info("Applied %d updated field(s) to '%s'", len(chosen), display_name(doc))
        return chosen

"""
charversions/diff_engine.py -- Field-by-field comparison of two documents.

Walks the field schema in declared order and emits one ``FieldDiff`` per
field that differs.  Scalar and list fields go through the
``FieldComparator``; the embedded lorebook goes through the
``EntryMatcher`` plus a settings comparison.

Contract: for fixed inputs the output is identical on every run, in
both order and content.  Hosts build checkbox ids from the position of
each diff in the list.

Usage::

    from charversions.diff_engine import DocumentDiffEngine

    engine = DocumentDiffEngine()
    for diff in engine.compare_documents(local_data, remote_data):
        print(diff.label, diff.local_value, "->", diff.remote_value)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from charversions.comparator import FieldComparator, ListChanges
from charversions.entry_matcher import (
    EntryMatch,
    EntryMatcher,
    MetaChange,
    book_entries,
    compare_meta,
    has_meta,
    lorebooks_equal,
)
from charversions.errors import ValidationError
from charversions.schema import CARD_SCHEMA, FieldKind, FieldSpec
from charversions.text_diff import DiffLine, compose_line_diff
from charversions.utils import canonical_json, get_nested_value

logger = logging.getLogger(__name__)


@dataclass
class ItemChange:
    """A changed position in an ordered list (e.g. one greeting)."""
    index: int
    status: str  # added | removed | changed
    local: Any = None
    remote: Any = None


@dataclass
class EntryListDiff:
    """Structured lorebook differences, ready for separate rendering of
    additions, removals, modifications and settings changes."""
    matched: list[EntryMatch] = field(default_factory=list)
    added: list[dict] = field(default_factory=list)
    removed: list[dict] = field(default_factory=list)
    meta_changes: list[MetaChange] = field(default_factory=list)
    local_count: int = 0
    remote_count: int = 0
    removed_entirely: bool = False
    remote_absent: bool = False

    @property
    def modified(self) -> list[EntryMatch]:
        return [m for m in self.matched if m.changed_fields]

    @property
    def unchanged_count(self) -> int:
        return len(self.matched) - len(self.modified)


@dataclass
class FieldDiff:
    field: str
    label: str
    kind: FieldKind
    local_value: Any
    remote_value: Any
    is_long_text: bool = False
    list_changes: ListChanges | None = None
    item_changes: list[ItemChange] | None = None
    entries: EntryListDiff | None = None

    def text_lines(self) -> list[DiffLine]:
        """Composed line/word diff of the two formatted values."""
        return compose_line_diff(
            FieldComparator.format(self.local_value, self.kind),
            FieldComparator.format(self.remote_value, self.kind),
        )


def _ordered_changes(local: Any, remote: Any) -> list[ItemChange]:
    local_items = local if isinstance(local, list) else []
    remote_items = remote if isinstance(remote, list) else []
    changes: list[ItemChange] = []
    for idx in range(max(len(local_items), len(remote_items))):
        if idx >= len(local_items):
            changes.append(ItemChange(idx, "added", None, remote_items[idx]))
        elif idx >= len(remote_items):
            changes.append(ItemChange(idx, "removed", local_items[idx], None))
        elif canonical_json(local_items[idx]) != canonical_json(remote_items[idx]):
            changes.append(ItemChange(idx, "changed", local_items[idx], remote_items[idx]))
    return changes


def _as_document(doc: Any, side: str) -> dict:
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ValidationError(
            f"The {side} document must be a mapping of field names to values, "
            f"got {type(doc).__name__}."
        )
    return doc


class DocumentDiffEngine:
    """Compares documents against a static field schema.

    Parameters
    ----------
    schema : sequence of FieldSpec, optional
        Fields to compare, in output order (default: ``CARD_SCHEMA``).
    matcher : EntryMatcher, optional
        Entry matcher used for entry-list fields.
    """

    def __init__(self, schema: Sequence[FieldSpec] | None = None, matcher: EntryMatcher | None = None):
        self.schema = tuple(schema) if schema is not None else CARD_SCHEMA
        self.matcher = matcher or EntryMatcher()

    def compare_documents(
        self,
        local: dict | None,
        remote: dict | None,
        allowed_fields: Iterable[str] | None = None,
    ) -> list[FieldDiff]:
        """Return the differences between *local* and *remote*.

        Parameters
        ----------
        local, remote : dict
            Field data of the two versions.  Missing fields count as empty.
        allowed_fields : iterable of str, optional
            When given, only these field names are compared.
        """
        local = _as_document(local, "local")
        remote = _as_document(remote, "remote")
        allowed = set(allowed_fields) if allowed_fields is not None else None

        diffs: list[FieldDiff] = []
        for spec in self.schema:
            if allowed is not None and spec.name not in allowed:
                continue
            lv = get_nested_value(local, spec.name)
            rv = get_nested_value(remote, spec.name)

            if spec.kind is FieldKind.ENTRY_LIST:
                diff = self._compare_entry_list(spec, lv, rv)
                if diff is not None:
                    diffs.append(diff)
                continue

            if FieldComparator.equal(lv, rv, spec.kind):
                continue

            diff = FieldDiff(
                field=spec.name,
                label=spec.display_label,
                kind=spec.kind,
                local_value=lv,
                remote_value=rv,
                is_long_text=spec.is_long_text,
            )
            if spec.kind is FieldKind.UNORDERED_LIST:
                diff.list_changes = FieldComparator.list_changes(lv, rv)
            elif spec.kind is FieldKind.ORDERED_LIST:
                diff.item_changes = _ordered_changes(lv, rv)
            diffs.append(diff)

        logger.debug("Compared %d fields, %d differ", len(self.schema), len(diffs))
        return diffs

    def _compare_entry_list(self, spec: FieldSpec, lv: Any, rv: Any) -> FieldDiff | None:
        local_entries = book_entries(lv)
        remote_entries = book_entries(rv)

        if local_entries and not remote_entries and not has_meta(rv):
            entries = EntryListDiff(
                removed=list(local_entries),
                local_count=len(local_entries),
                remote_count=0,
                removed_entirely=True,
                remote_absent=rv is None,
            )
        elif lorebooks_equal(lv, rv):
            return None
        else:
            result = self.matcher.match(local_entries, remote_entries)
            entries = EntryListDiff(
                matched=result.matched,
                added=result.added,
                removed=result.removed,
                meta_changes=compare_meta(lv, rv),
                local_count=len(local_entries),
                remote_count=len(remote_entries),
                remote_absent=rv is None,
            )

        return FieldDiff(
            field=spec.name,
            label=spec.display_label,
            kind=spec.kind,
            local_value=lv,
            remote_value=rv,
            is_long_text=spec.is_long_text,
            entries=entries,
        )


def compare_documents(
    local: dict | None,
    remote: dict | None,
    schema: Sequence[FieldSpec] | None = None,
    allowed_fields: Iterable[str] | None = None,
) -> list[FieldDiff]:
    """Module-level shortcut for ``DocumentDiffEngine(schema).compare_documents``."""
    return DocumentDiffEngine(schema).compare_documents(local, remote, allowed_fields)

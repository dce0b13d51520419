"""
charversions/comparator.py -- Field normalisation, equality and display.

Historical and external documents are routinely schema-partial: one side
may omit a field the other side sets to an empty string or an empty list.
Normalisation folds all of those "nothing here" shapes into one canonical
empty value so they never show up as differences.

Usage::

    from charversions.comparator import FieldComparator
    from charversions.schema import FieldKind

    FieldComparator.equal(["rpg", "Fantasy"], ["fantasy", "rpg"], FieldKind.UNORDERED_LIST)  # True
    FieldComparator.format(None)  # "(empty)"
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from charversions.schema import FieldKind
from charversions.utils import canonical_json

EMPTY_TEXT = "(empty)"


def _normalize_text(value: str) -> str:
    return value.replace("\r\n", "\n").strip()


def _scalar_form(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return _normalize_text(value)
    # Numbers, booleans and objects compare by their JSON form.
    return canonical_json(value)


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@dataclass
class ListChanges:
    """Case-insensitive set difference between two unordered lists."""
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)


class FieldComparator:
    """Stateless normalise / compare / format helpers keyed by ``FieldKind``."""

    @staticmethod
    def normalize(value: Any, kind: FieldKind = FieldKind.SCALAR) -> str | tuple[str, ...]:
        """Return the canonical comparison form of *value*.

        Scalars become trimmed strings with ``\\n`` line endings; absent
        and whitespace-only values become ``""``.  Unordered lists become
        a case-folded, de-duplicated, sorted tuple; ordered lists keep
        their order and repeats.  An empty list normalises to ``""`` so it
        matches an absent field.
        """
        kind = FieldKind(kind)
        if kind in (FieldKind.SCALAR, FieldKind.ENTRY_LIST):
            return _scalar_form(value)

        items: list[str] = []
        for item in _as_list(value):
            if isinstance(item, str):
                text = _normalize_text(item)
                if kind is FieldKind.UNORDERED_LIST:
                    if not text:
                        continue
                    text = text.casefold()
                items.append(text)
            else:
                items.append(canonical_json(item))

        if not items:
            return ""
        if kind is FieldKind.UNORDERED_LIST:
            items = sorted(set(items), key=lambda s: (s.casefold(), s))
        return tuple(items)

    @classmethod
    def equal(cls, a: Any, b: Any, kind: FieldKind = FieldKind.SCALAR) -> bool:
        return cls.normalize(a, kind) == cls.normalize(b, kind)

    @staticmethod
    def format(value: Any, kind: FieldKind | None = None) -> str:
        """Human-readable rendering used for short diffs and text diffs."""
        if value is None:
            return EMPTY_TEXT
        if isinstance(value, str):
            return value if value.strip() else EMPTY_TEXT
        if isinstance(value, (list, tuple)):
            if not value:
                return EMPTY_TEXT
            parts = [v if isinstance(v, str) else canonical_json(v) for v in value]
            if kind is not None and FieldKind(kind) is FieldKind.ORDERED_LIST:
                return "\n".join(f"[{i}] {p}" for i, p in enumerate(parts, start=1))
            return ", ".join(parts)
        if isinstance(value, dict):
            return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def list_changes(local: Any, remote: Any) -> ListChanges:
        """Compare two unordered string lists case-insensitively.

        Original spelling is kept in the output; ``kept`` uses the local
        spelling.
        """
        local_items = [str(t).strip() for t in _as_list(local) if str(t).strip()]
        remote_items = [str(t).strip() for t in _as_list(remote) if str(t).strip()]
        local_set = {t.casefold() for t in local_items}
        remote_set = {t.casefold() for t in remote_items}
        return ListChanges(
            added=[t for t in remote_items if t.casefold() not in local_set],
            removed=[t for t in local_items if t.casefold() not in remote_set],
            kept=[t for t in local_items if t.casefold() in remote_set],
        )

    @staticmethod
    def truncate(text: str, limit: int = 60) -> str:
        if not text:
            return ""
        if len(text) <= limit:
            return text
        return text[: max(limit - 3, 0)] + "..."

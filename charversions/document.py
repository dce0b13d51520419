"""
charversions/document.py -- Document handles, field extraction and writers.

A *document handle* is the mutable mapping the host hands us for a
character.  Its field data lives under ``data`` when present (the
character-card V2 layout) and at the top level otherwise.  The external
storage key (which can change when the host renames the file) is the
handle's ``avatar`` value; the stable identity lives at
``extensions.version_uid`` inside the field data.

Writing back into a document always goes through a ``DocumentWriter`` so
the host decides how an update is persisted.

Usage::

    from charversions.document import InMemoryDocumentWriter, extract_document_data

    data = extract_document_data(doc)
    InMemoryDocumentWriter().apply_updates(doc, {"tags": ["new"]})
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from charversions.errors import ApplyError, ValidationError
from charversions.schema import CARD_SCHEMA, FieldSpec, snapshot_roots
from charversions.utils import (
    deep_copy,
    delete_nested_value,
    get_nested_value,
    safe_read_json,
    safe_write_json,
    set_nested_value,
)

logger = logging.getLogger(__name__)

STORAGE_KEY_FIELD = "avatar"
IDENTITY_PATH = "extensions.version_uid"
PROVENANCE_PATH = "extensions.version_history"


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------

def card_data(doc: Any) -> dict:
    """Return the mapping that holds *doc*'s fields."""
    if not isinstance(doc, dict):
        raise ValidationError(f"A document must be a mapping, got {type(doc).__name__}.")
    data = doc.get("data")
    return data if isinstance(data, dict) else doc


def storage_key(doc: dict) -> str | None:
    key = doc.get(STORAGE_KEY_FIELD) if isinstance(doc, dict) else None
    return str(key) if key else None


def get_identity(doc: dict) -> str | None:
    uid = get_nested_value(card_data(doc), IDENTITY_PATH)
    return uid if isinstance(uid, str) and uid else None


def display_name(doc: dict) -> str:
    for candidate in (card_data(doc).get("name"), doc.get("name")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return "Unknown"


def extract_document_data(doc: dict, schema: Iterable[FieldSpec] = CARD_SCHEMA) -> dict:
    """Deep-copy the schema-covered top-level fields of *doc*.

    Only keys actually present are copied, so the result stays
    schema-partial exactly like the source.
    """
    src = card_data(doc)
    return {root: deep_copy(src[root]) for root in snapshot_roots(schema) if root in src}


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

@runtime_checkable
class DocumentWriter(Protocol):
    """Applies dotted-path field updates to a document.

    A ``None`` value clears the path.  Implementations raise on failure;
    callers translate the failure into ``ApplyError``.
    """

    def apply_updates(self, doc: dict, updates: Mapping[str, Any]) -> None:
        ...


class InMemoryDocumentWriter:
    """Mutates the handle's field data in place."""

    def apply_updates(self, doc: dict, updates: Mapping[str, Any]) -> None:
        target = card_data(doc)
        for path, value in updates.items():
            if value is None:
                delete_nested_value(target, path)
            else:
                set_nested_value(target, path, deep_copy(value))


class JsonFileDocumentWriter(InMemoryDocumentWriter):
    """Applies updates in memory, then rewrites the backing JSON file.

    Parameters
    ----------
    path : str or pathlib.Path
        The JSON file the document was loaded from.
    """

    def __init__(self, path):
        self.path = Path(path)

    def apply_updates(self, doc: dict, updates: Mapping[str, Any]) -> None:
        super().apply_updates(doc, updates)
        try:
            safe_write_json(self.path, doc)
        except OSError as exc:
            raise ApplyError(
                f"Could not save the document to {self.path}. Technical detail: {exc}"
            ) from exc


def load_document(path) -> dict:
    """Read a document handle from a JSON file."""
    doc = safe_read_json(path)
    if not isinstance(doc, dict):
        raise ValidationError(f"'{path}' does not contain a JSON document object.")
    return doc


# ---------------------------------------------------------------------------
# Source normalisation
# ---------------------------------------------------------------------------

def normalize_card_definition(defn: Any) -> dict:
    """Convert a fetched card definition into schema-shaped field data.

    Accepts a V2 card (``{"spec": "chara_card_v2", "data": {...}}``), any
    ``{"data": {...}}`` wrapper that looks like card data, plain card
    field data, or a flat hub-style definition whose field names differ
    from the card's.
    """
    if not isinstance(defn, dict) or not defn:
        return {}
    data = defn.get("data")
    if isinstance(data, dict) and (
        defn.get("spec") == "chara_card_v2"
        or "description" in data
        or "first_mes" in data
    ):
        return dict(data)
    if "first_mes" in defn or "mes_example" in defn:
        return dict(defn)

    out = {
        "name": defn.get("name") or "",
        "description": defn.get("personality") or "",
        "personality": defn.get("tavern_personality") or "",
        "scenario": defn.get("scenario") or "",
        "first_mes": defn.get("first_message") or "",
        "mes_example": defn.get("example_dialogs") or "",
        "system_prompt": defn.get("system_prompt") or "",
        "post_history_instructions": defn.get("post_history_instructions") or "",
        "creator_notes": defn.get("description") or "",
        "creator": defn.get("creator") or "",
        "character_version": defn.get("character_version") or "",
        "tags": defn.get("tags") or defn.get("topics") or [],
        "alternate_greetings": defn.get("alternate_greetings") or [],
        "extensions": defn.get("extensions") or {},
    }
    book = defn.get("embedded_lorebook") or defn.get("character_book")
    if book:
        out["character_book"] = book
    return out

"""
charversions/schema.py -- Static field schema for character documents.

The schema is the ordered declaration of which document fields are
compared, how they are labelled, and which comparison strategy applies.
Order matters: diff output follows it exactly, and hosts key UI state
off that order.

Usage::

    from charversions.schema import CARD_SCHEMA, load_schema

    schema = load_schema([
        {"name": "name", "label": "Name", "kind": "scalar"},
        {"name": "tags", "label": "Tags", "kind": "unordered-list"},
    ])
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from charversions.errors import ValidationError

logger = logging.getLogger(__name__)


class FieldKind(str, Enum):
    """Comparison strategy for a schema field."""

    SCALAR = "scalar"
    UNORDERED_LIST = "unordered-list"
    ORDERED_LIST = "ordered-list"
    ENTRY_LIST = "entry-list"


class FieldSpec(BaseModel):
    """One comparable field of a document.

    ``name`` may be a dotted path into a nested object
    (``depth_prompt.prompt``).  ``long`` marks fields whose differences
    are shown as a line/word diff instead of a one-line summary.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1)
    label: str = ""
    kind: FieldKind = FieldKind.SCALAR
    long: bool = Field(default=False, alias="isLongText")

    @property
    def is_long_text(self) -> bool:
        return self.long

    @property
    def root(self) -> str:
        """Top-level key that holds this field."""
        return self.name.split(".", 1)[0]

    @property
    def display_label(self) -> str:
        return self.label or self.name


# ------------------------------------------------------------------
# Default character-card schema
# ------------------------------------------------------------------

def _f(name: str, label: str, kind: FieldKind = FieldKind.SCALAR, long: bool = False) -> FieldSpec:
    return FieldSpec(name=name, label=label, kind=kind, long=long)


CARD_SCHEMA: tuple[FieldSpec, ...] = (
    _f("name", "Name"),
    _f("description", "Description", long=True),
    _f("personality", "Personality", long=True),
    _f("scenario", "Scenario", long=True),
    _f("first_mes", "First Message", long=True),
    _f("mes_example", "Example Messages", long=True),
    _f("system_prompt", "System Prompt", long=True),
    _f("post_history_instructions", "Post-History Instructions", long=True),
    _f("creator_notes", "Creator Notes", long=True),
    _f("creator", "Creator"),
    _f("character_version", "Version"),
    _f("nickname", "Nickname"),
    _f("tags", "Tags", FieldKind.UNORDERED_LIST),
    _f("alternate_greetings", "Alternate Greetings", FieldKind.ORDERED_LIST, long=True),
    _f("group_only_greetings", "Group Only Greetings", FieldKind.ORDERED_LIST, long=True),
    _f("depth_prompt.prompt", "Depth Prompt Text", long=True),
    _f("depth_prompt.depth", "Depth Prompt Depth"),
    _f("depth_prompt.role", "Depth Prompt Role"),
    _f("character_book", "Embedded Lorebook", FieldKind.ENTRY_LIST),
)

# Lorebook entry fields in declaration order.  Host-internal keys
# (uid, display_index, vectorized, ...) are deliberately absent.
ENTRY_FIELDS: tuple[str, ...] = (
    "keys", "secondary_keys", "content", "enabled", "selective",
    "constant", "position", "insertion_order", "priority", "case_sensitive",
    "name", "comment", "id",
)

# Entry fields used to identify an entry rather than describe it.
ENTRY_IDENTITY_FIELDS = frozenset({"id", "name", "comment"})

# Lorebook-level settings (key -> display label), in display order.
LOREBOOK_META_FIELDS: dict[str, str] = {
    "name": "Name",
    "description": "Description",
    "scan_depth": "Scan Depth",
    "token_budget": "Token Budget",
    "recursive_scanning": "Recursive Scanning",
}


# ------------------------------------------------------------------
# Schema construction helpers
# ------------------------------------------------------------------

def load_schema(descriptors: Iterable[dict[str, Any] | FieldSpec]) -> tuple[FieldSpec, ...]:
    """Build a schema from plain descriptors.

    Raises
    ------
    ValidationError
        If a descriptor is malformed (unknown kind, empty name, extra
        keys) or two descriptors share a name.
    """
    fields: list[FieldSpec] = []
    seen: set[str] = set()
    for idx, desc in enumerate(descriptors):
        if isinstance(desc, FieldSpec):
            spec = desc
        else:
            try:
                spec = FieldSpec.model_validate(desc)
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    f"Field descriptor #{idx + 1} is not valid: {exc.errors()[0]['msg']}"
                ) from exc
        if spec.name in seen:
            raise ValidationError(f"Field '{spec.name}' is declared more than once.")
        seen.add(spec.name)
        fields.append(spec)
    return tuple(fields)


def snapshot_roots(schema: Iterable[FieldSpec]) -> list[str]:
    """Return the ordered, de-duplicated top-level keys covered by *schema*.

    These are the keys captured in snapshots and backups, so a nested
    field such as ``depth_prompt.prompt`` captures the whole
    ``depth_prompt`` object.
    """
    roots: list[str] = []
    for spec in schema:
        if spec.root not in roots:
            roots.append(spec.root)
    return roots


def get_field(schema: Iterable[FieldSpec], name: str) -> FieldSpec | None:
    for spec in schema:
        if spec.name == name:
            return spec
    return None

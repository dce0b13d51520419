"""
charversions/models/validators.py -- Shape checks for incoming documents.

Diffing tolerates partial documents, but restoring writes data back into
a live document, so the source is checked first.  Checks are structural
only: list fields must be lists, the lorebook must be an object whose
entries are objects, and so on.  Missing fields are always fine.

Usage::

    from charversions.models.validators import validate_document

    validate_document(source_data)   # raises ValidationError on bad shape
"""

from __future__ import annotations

import logging
from typing import Any

import jsonschema

from charversions.errors import ValidationError

logger = logging.getLogger(__name__)

_STRING_LIST = {"type": ["array", "null"], "items": {"type": ["string", "null"]}}

ENTRY_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "keys": {"type": ["array", "null"]},
        "secondary_keys": {"type": ["array", "null"]},
        "content": {"type": ["string", "null"]},
        "enabled": {"type": ["boolean", "null"]},
    },
}

LOREBOOK_SCHEMA: dict = {
    "type": ["object", "null"],
    "properties": {
        "entries": {
            "anyOf": [
                {"type": "array", "items": ENTRY_SCHEMA},
                {"type": "object", "additionalProperties": ENTRY_SCHEMA},
                {"type": "null"},
            ]
        },
        "scan_depth": {"type": ["number", "null"]},
        "token_budget": {"type": ["number", "null"]},
        "recursive_scanning": {"type": ["boolean", "null"]},
    },
}

DOCUMENT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "name": {"type": ["string", "null"]},
        "tags": _STRING_LIST,
        "alternate_greetings": _STRING_LIST,
        "group_only_greetings": _STRING_LIST,
        "depth_prompt": {"type": ["object", "null"]},
        "extensions": {"type": ["object", "null"]},
        "character_book": LOREBOOK_SCHEMA,
    },
}

_validator = jsonschema.Draft7Validator(DOCUMENT_SCHEMA)


def document_errors(data: Any) -> list[str]:
    """Return human-readable shape problems in *data* (empty when valid)."""
    problems: list[str] = []
    for err in sorted(_validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        where = ".".join(str(p) for p in err.absolute_path) or "document"
        problems.append(f"{where}: {err.message}")
    return problems


def validate_document(data: Any) -> None:
    """Raise ``ValidationError`` if *data* is not a well-shaped document."""
    problems = document_errors(data)
    if problems:
        logger.debug("Document failed shape validation: %s", problems)
        raise ValidationError(
            "The document data is not in the expected format: " + "; ".join(problems[:5])
        )

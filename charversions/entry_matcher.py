"""
charversions/entry_matcher.py -- Fuzzy matching of lorebook entries.

Lorebook entries have no stable key across versions: hosts renumber
``id``/``uid`` freely and authors reorder entries at will.  Entries are
therefore paired by similarity, using the first positive signal from:

    1. Jaccard overlap of the trigger-key sets
    2. Comment (falling back to name), exact or substring
    3. The opening of the entry content

The matcher never assumes where its two inputs came from; two local
snapshots and a local/remote pair go through exactly the same path.

The pairing is a greedy O(n*m) pass rather than an optimal bipartite
assignment.  Lorebooks hold tens of entries, not thousands.

Usage::

    from charversions.entry_matcher import EntryMatcher

    result = EntryMatcher().match(local_book["entries"], remote_book["entries"])
    for pair in result.matched:
        print(pair.changed_fields)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from charversions.schema import ENTRY_FIELDS, ENTRY_IDENTITY_FIELDS, LOREBOOK_META_FIELDS
from charversions.utils import canonical_json

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.3
NAME_EXACT_SCORE = 1.0
NAME_PARTIAL_SCORE = 0.8
CONTENT_SCORE = 0.7
CONTENT_PREFIX = 200
CONTENT_MIN_LENGTH = 20

NOT_SET = "(not set)"


@dataclass
class EntryMatch:
    local: dict
    remote: dict
    changed_fields: list[str] = field(default_factory=list)

    @property
    def modified(self) -> bool:
        return bool(self.changed_fields)


@dataclass
class MatchResult:
    """``added`` holds remote-only entries, ``removed`` local-only ones."""
    matched: list[EntryMatch] = field(default_factory=list)
    added: list[dict] = field(default_factory=list)
    removed: list[dict] = field(default_factory=list)


@dataclass
class MetaChange:
    key: str
    label: str
    local: Any
    remote: Any
    local_text: str
    remote_text: str


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _key_tokens(entry: dict) -> set[str]:
    tokens: set[str] = set()
    for key in entry.get("keys") or []:
        for part in str(key).split(","):
            part = part.strip().lower()
            if part:
                tokens.add(part)
    return tokens


def _label_of(entry: dict) -> str:
    return str(entry.get("comment") or entry.get("name") or "").strip().lower()


def _content_head(entry: dict) -> str:
    return str(entry.get("content") or "")[:CONTENT_PREFIX].strip().casefold()


def _meta_text(value: Any) -> str:
    if value is None:
        return NOT_SET
    if isinstance(value, (dict, list)):
        return canonical_json(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def entry_display_name(entry: dict) -> str:
    """Best human-readable name for an entry."""
    for key in ("comment", "name"):
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    keys = entry.get("keys") or []
    if keys:
        return ", ".join(str(k) for k in keys[:3])
    entry_id = entry.get("id")
    return f"Entry #{entry_id if entry_id is not None else '?'}"


def normalize_entry(entry: dict) -> dict:
    """Restrict *entry* to the declared entry fields."""
    return {f: entry[f] for f in ENTRY_FIELDS if f in entry}


def book_entries(book: Any) -> list[dict]:
    if not isinstance(book, dict):
        return []
    entries = book.get("entries") or []
    # Some exporters store entries keyed by uid instead of as a list.
    if isinstance(entries, dict):
        entries = list(entries.values())
    return [e for e in entries if isinstance(e, dict)]


def lorebooks_equal(a: Any, b: Any) -> bool:
    """Two lorebooks are equal when both are empty, or when all meta
    fields match and the entries match position by position."""
    a_entries = book_entries(a)
    b_entries = book_entries(b)
    if not a_entries and not b_entries:
        return True

    a_book = a if isinstance(a, dict) else {}
    b_book = b if isinstance(b, dict) else {}
    for key in LOREBOOK_META_FIELDS:
        if canonical_json(a_book.get(key)) != canonical_json(b_book.get(key)):
            return False

    if len(a_entries) != len(b_entries):
        return False
    return all(
        canonical_json(normalize_entry(x)) == canonical_json(normalize_entry(y))
        for x, y in zip(a_entries, b_entries)
    )


def compare_meta(local_book: Any, remote_book: Any) -> list[MetaChange]:
    """List the lorebook settings that differ, in declaration order."""
    local_book = local_book if isinstance(local_book, dict) else {}
    remote_book = remote_book if isinstance(remote_book, dict) else {}
    changes: list[MetaChange] = []
    for key, label in LOREBOOK_META_FIELDS.items():
        lv = local_book.get(key)
        rv = remote_book.get(key)
        if canonical_json(lv) != canonical_json(rv):
            changes.append(MetaChange(key, label, lv, rv, _meta_text(lv), _meta_text(rv)))
    return changes


def has_meta(book: Any) -> bool:
    if not isinstance(book, dict):
        return False
    return any(book.get(key) not in (None, "") for key in LOREBOOK_META_FIELDS)


# ------------------------------------------------------------------
# EntryMatcher
# ------------------------------------------------------------------

class EntryMatcher:
    """Greedy best-first pairing of two unordered entry lists.

    Local entries are visited last to first, so the pairing depends on
    the order of the inputs and is not symmetric in general.

    Parameters
    ----------
    threshold : float
        A pair is only committed when its score is strictly above this
        value (default 0.3).
    """

    def __init__(self, threshold: float = MATCH_THRESHOLD):
        self.threshold = threshold

    @staticmethod
    def score(a: dict, b: dict) -> float:
        """Similarity of two entries in ``[0, 1]``."""
        a_keys = _key_tokens(a)
        b_keys = _key_tokens(b)
        if a_keys and b_keys:
            jaccard = len(a_keys & b_keys) / len(a_keys | b_keys)
            if jaccard > 0:
                return jaccard

        a_name = _label_of(a)
        b_name = _label_of(b)
        if a_name and b_name:
            if a_name == b_name:
                return NAME_EXACT_SCORE
            if a_name in b_name or b_name in a_name:
                return NAME_PARTIAL_SCORE

        a_head = _content_head(a)
        b_head = _content_head(b)
        if len(a_head) > CONTENT_MIN_LENGTH and len(b_head) > CONTENT_MIN_LENGTH and a_head == b_head:
            return CONTENT_SCORE

        return 0.0

    @staticmethod
    def changed_fields(local: dict, remote: dict) -> list[str]:
        """Declared, non-identity entry fields whose values differ."""
        return [
            f for f in ENTRY_FIELDS
            if f not in ENTRY_IDENTITY_FIELDS
            and canonical_json(local.get(f)) != canonical_json(remote.get(f))
        ]

    def match(self, local_entries: Sequence[dict], remote_entries: Sequence[dict]) -> MatchResult:
        unmatched_local = list(local_entries or [])
        unmatched_remote = list(remote_entries or [])
        matched: list[EntryMatch] = []

        for i in range(len(unmatched_local) - 1, -1, -1):
            local = unmatched_local[i]
            best_idx = -1
            best_score = 0.0
            for j, remote in enumerate(unmatched_remote):
                score = self.score(local, remote)
                if score > best_score:
                    best_score = score
                    best_idx = j

            if best_idx >= 0 and best_score > self.threshold:
                remote = unmatched_remote.pop(best_idx)
                del unmatched_local[i]
                matched.append(EntryMatch(local, remote, self.changed_fields(local, remote)))

        logger.debug(
            "Matched %d entries (%d added, %d removed)",
            len(matched), len(unmatched_remote), len(unmatched_local),
        )
        return MatchResult(matched=matched, added=unmatched_remote, removed=unmatched_local)

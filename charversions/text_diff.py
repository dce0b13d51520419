"""
charversions/text_diff.py -- Line- and word-level text diff.

Both levels use the same longest-common-subsequence table and the same
backtracking rule, so their output is fully deterministic:

    Backtracking walks from the end of both sequences.  On a mismatch,
    when ``dp[i][j-1] >= dp[i-1][j]`` the new side is consumed (an
    ``added`` item), otherwise the old side (a ``removed`` item).

Because the walk runs backwards, a replaced region comes out as its
``removed`` lines followed by its ``added`` lines.  Consumers compare
diff output structurally, so this rule must not change.

Usage::

    from charversions.text_diff import line_diff, word_diff, compose_line_diff

    for line in compose_line_diff(old_text, new_text):
        print(line.type, line.text)
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Sequence

CONTEXT = "context"
REMOVED = "removed"
ADDED = "added"
SAME = "same"

_TOKEN_RE = re.compile(r"\S+|\s+")


@dataclass(frozen=True)
class Token:
    type: str  # same | removed | added
    text: str


@dataclass(frozen=True)
class DiffLine:
    """One line of a line diff.

    ``tokens`` is only set on lines that are half of a modified pair
    (a ``removed`` line immediately followed by an ``added`` line).
    """
    type: str  # context | removed | added
    text: str
    tokens: tuple[Token, ...] | None = None


@dataclass(frozen=True)
class WordDiff:
    old_tokens: tuple[Token, ...]
    new_tokens: tuple[Token, ...]


@dataclass
class SideBySide:
    """Aligned two-column view of a text diff."""
    left: list[DiffLine] = field(default_factory=list)
    right: list[DiffLine] = field(default_factory=list)
    modified: int = 0
    added: int = 0
    removed: int = 0

    @property
    def summary(self) -> str:
        parts = []
        if self.modified:
            parts.append(f"{self.modified} modified")
        if self.added:
            parts.append(f"{self.added} added")
        if self.removed:
            parts.append(f"{self.removed} removed")
        return ", ".join(parts) if parts else "different"


# ------------------------------------------------------------------
# LCS core
# ------------------------------------------------------------------

def _lcs_ops(old: Sequence[str], new: Sequence[str]) -> list[tuple[str, str]]:
    """Return ``(op, item)`` pairs where op is ``=``, ``-`` or ``+``."""
    m, n = len(old), len(new)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        row, prev = dp[i], dp[i - 1]
        o = old[i - 1]
        for j in range(1, n + 1):
            if o == new[j - 1]:
                row[j] = prev[j - 1] + 1
            else:
                row[j] = prev[j] if prev[j] > row[j - 1] else row[j - 1]

    ops: list[tuple[str, str]] = []
    i, j = m, n
    while i > 0 or j > 0:
        if i > 0 and j > 0 and old[i - 1] == new[j - 1]:
            ops.append(("=", old[i - 1]))
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or dp[i][j - 1] >= dp[i - 1][j]):
            ops.append(("+", new[j - 1]))
            j -= 1
        else:
            ops.append(("-", old[i - 1]))
            i -= 1
    ops.reverse()
    return ops


def split_lines(text: str) -> list[str]:
    return (text or "").split("\n")


def tokenize(line: str) -> list[str]:
    """Split *line* into maximal whitespace / non-whitespace runs.

    Concatenating the tokens always reproduces *line* exactly.
    """
    return _TOKEN_RE.findall(line or "")


# ------------------------------------------------------------------
# Public diff functions
# ------------------------------------------------------------------

def line_diff(old_text: str, new_text: str) -> list[DiffLine]:
    """Line-level diff of two texts."""
    kinds = {"=": CONTEXT, "-": REMOVED, "+": ADDED}
    return [
        DiffLine(kinds[op], item)
        for op, item in _lcs_ops(split_lines(old_text), split_lines(new_text))
    ]


def word_diff(old_line: str, new_line: str) -> WordDiff:
    """Word-level diff of two single lines."""
    old_tokens: list[Token] = []
    new_tokens: list[Token] = []
    for op, item in _lcs_ops(tokenize(old_line), tokenize(new_line)):
        if op == "=":
            old_tokens.append(Token(SAME, item))
            new_tokens.append(Token(SAME, item))
        elif op == "+":
            new_tokens.append(Token(ADDED, item))
        else:
            old_tokens.append(Token(REMOVED, item))
    return WordDiff(tuple(old_tokens), tuple(new_tokens))


def compose_line_diff(old_text: str, new_text: str) -> list[DiffLine]:
    """Line diff where each removed+added pair carries word-level tokens."""
    lines = line_diff(old_text, new_text)
    out: list[DiffLine] = []
    i = 0
    while i < len(lines):
        item = lines[i]
        if item.type == REMOVED and i + 1 < len(lines) and lines[i + 1].type == ADDED:
            nxt = lines[i + 1]
            words = word_diff(item.text, nxt.text)
            out.append(DiffLine(REMOVED, item.text, words.old_tokens))
            out.append(DiffLine(ADDED, nxt.text, words.new_tokens))
            i += 2
        else:
            out.append(item)
            i += 1
    return out


def diff_stats(lines: Sequence[DiffLine]) -> dict[str, int]:
    """Count added and removed lines."""
    return {
        "added": sum(1 for d in lines if d.type == ADDED),
        "removed": sum(1 for d in lines if d.type == REMOVED),
        "total": len(lines),
    }


def side_by_side(old_text: str, new_text: str) -> SideBySide:
    """Align a line diff into left (old) and right (new) columns.

    Modified pairs share a row; lone removed/added lines are padded with
    an ``empty`` row on the other side.
    """
    result = SideBySide()
    for line in compose_line_diff(old_text, new_text):
        if line.type == CONTEXT:
            result.left.append(line)
            result.right.append(line)
        elif line.tokens is not None and line.type == REMOVED:
            result.left.append(line)
            result.modified += 1
        elif line.tokens is not None and line.type == ADDED:
            result.right.append(line)
        elif line.type == REMOVED:
            result.left.append(line)
            result.right.append(DiffLine("empty", ""))
            result.removed += 1
        else:
            result.left.append(DiffLine("empty", ""))
            result.right.append(line)
            result.added += 1
    return result


# ------------------------------------------------------------------
# HTML rendering
# ------------------------------------------------------------------

_PREFIX = {CONTEXT: " ", REMOVED: "-", ADDED: "+"}


def _render_tokens(tokens: Sequence[Token]) -> str:
    parts = []
    for tok in tokens:
        text = html.escape(tok.text)
        if tok.type == SAME:
            parts.append(text)
        else:
            parts.append(f'<span class="word-{tok.type}">{text}</span>')
    return "".join(parts)


def render_html(lines: Sequence[DiffLine]) -> str:
    """Render composed diff lines as escaped HTML ``div`` rows."""
    rows = []
    for line in lines:
        body = _render_tokens(line.tokens) if line.tokens is not None else html.escape(line.text)
        rows.append(
            f'<div class="diff-line {line.type}">'
            f'<span class="diff-prefix">{_PREFIX.get(line.type, " ")}</span>{body}</div>'
        )
    return "".join(rows) or '<div class="diff-line context">(no content)</div>'

"""
charversions/utils.py -- Shared helpers for the version tracker.

Groups the small helpers every other module leans on: atomic JSON file
I/O, a canonical JSON form used for deep-equality checks, dotted-path
access into nested documents, and clock helpers.

All JSON writes use atomic temp-file-then-os.replace() so that a crash
never leaves a half-written settings file or document behind.
"""

import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JSON I/O (atomic writes)
# ---------------------------------------------------------------------------

def safe_read_json(path, default=None):
    """Read a JSON file, returning *default* if the file is missing or corrupt.

    Parameters
    ----------
    path : str or pathlib.Path
        Absolute path to the JSON file.
    default
        Value returned when the file cannot be read (default ``None``).

    Returns
    -------
    object
        Parsed JSON content, or *default* on failure.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return default


def safe_write_json(path, data, *, indent=2):
    """Atomically write *data* as JSON to *path*.

    Uses a temporary file in the same directory followed by
    ``os.replace()`` so that readers never see a partially-written file.
    Parent directories are created if they do not exist.
    """
    write_bytes_atomic(
        path, json.dumps(data, indent=indent, ensure_ascii=False).encode("utf-8")
    )


def write_bytes_atomic(path, payload: bytes) -> None:
    """Atomically replace the file at *path* with *payload*."""
    path = str(path)
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# Canonical JSON
# ---------------------------------------------------------------------------

def canonical_json(value) -> str:
    """Serialise *value* with sorted keys and no whitespace.

    Two values are deep-equal for our purposes exactly when their
    canonical forms are equal.  Values JSON cannot represent fall back
    to ``str()``.
    """
    return json.dumps(
        value, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str
    )


def deep_copy(value):
    """Return an independent copy of a JSON-like value."""
    return copy.deepcopy(value)


# ---------------------------------------------------------------------------
# Dotted-path access
# ---------------------------------------------------------------------------

def get_nested_value(obj, path: str, default=None):
    """Return the value at dot-separated *path* inside *obj*.

    Missing keys and non-mapping intermediates yield *default*, never
    an exception.

    Examples:
        get_nested_value({"a": {"b": 1}}, "a.b")  -> 1
        get_nested_value({"a": "text"}, "a.b")    -> None
    """
    current = obj
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def set_nested_value(obj: dict, path: str, value) -> None:
    """Set *value* at dot-separated *path*, creating intermediate dicts."""
    keys = path.split(".")
    target = obj
    for key in keys[:-1]:
        child = target.get(key)
        if not isinstance(child, dict):
            child = {}
            target[key] = child
        target = child
    target[keys[-1]] = value


def delete_nested_value(obj: dict, path: str) -> None:
    """Remove the key at *path* if present.  Missing paths are ignored."""
    keys = path.split(".")
    target = obj
    for key in keys[:-1]:
        target = target.get(key) if isinstance(target, dict) else None
        if not isinstance(target, dict):
            return
    if isinstance(target, dict):
        target.pop(keys[-1], None)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Return the current UTC time as integer epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def format_timestamp(ms: int) -> str:
    """Render epoch milliseconds as a short local date-time for labels."""
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")

"""
charversions/errors.py -- Exception hierarchy for the version tracker.

Every error raised on purpose by this package derives from
``CharVersionsError`` so hosts can catch a single type at the boundary.
Backend exceptions are always chained (``raise ... from exc``) so the
technical detail survives in the traceback.
"""


class CharVersionsError(Exception):
    """Base exception for all version-tracking errors."""


class ValidationError(CharVersionsError):
    """A field schema, document or settings file has the wrong shape."""


class NotFoundError(CharVersionsError):
    """A snapshot id is unknown or there is no backup to undo."""


class StorageError(CharVersionsError):
    """The storage backend failed to read, write or delete a blob."""


class ApplyError(CharVersionsError):
    """Writing field values back onto the target document failed."""

"""
charversions/config.py -- User settings for the version tracker.

Settings live in a small JSON file (by default ``settings.json`` in the
platform user data directory).  A missing or unreadable file simply
yields the defaults; a file with invalid values is reported rather than
silently ignored.

Usage::

    from charversions.config import load_settings

    settings = load_settings()
    settings.max_auto_backups   # 10
"""

from __future__ import annotations

import logging

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from charversions.errors import ValidationError
from charversions.paths import get_settings_path
from charversions.utils import safe_read_json, safe_write_json

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Tunable behaviour.

    ``max_auto_backups`` caps automatic snapshots per document; ``0``
    disables the cap.  ``batch_window`` is how many documents a batch
    run processes at once.
    """

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    max_auto_backups: int = Field(default=10, ge=0)
    auto_snapshot_on_edit: bool = True
    batch_window: int = Field(default=5, ge=1)
    storage_dir: str | None = None


def load_settings(path: str | None = None) -> Settings:
    """Load settings from *path* (default: user data dir).

    Raises
    ------
    ValidationError
        If the file parses but contains invalid values.
    """
    path = path or get_settings_path()
    raw = safe_read_json(path, default=None)
    if raw is None:
        logger.debug("No settings at %s, using defaults", path)
        return Settings()
    if not isinstance(raw, dict):
        raise ValidationError(f"The settings file at {path} must contain a JSON object.")
    try:
        return Settings.model_validate(raw)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"The settings file at {path} is not valid: {problems}") from exc


def save_settings(settings: Settings, path: str | None = None) -> str:
    """Write *settings* atomically and return the path written."""
    path = path or get_settings_path()
    safe_write_json(path, settings.model_dump())
    return path

"""
charversions/paths.py -- Default on-disk locations.

Uses platformdirs for the per-user data directory so the snapshot store
and settings survive upgrades and land in the conventional place on
every OS.  ``CHARVERSIONS_HOME`` overrides the data directory.
"""

from __future__ import annotations

import os

from platformdirs import user_data_dir

_APP_NAME = "CharacterVersions"
_APP_AUTHOR = "CharacterVersions"

HOME_ENV_VAR = "CHARVERSIONS_HOME"


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory."""
    path = os.environ.get(HOME_ENV_VAR) or user_data_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path


def get_storage_dir() -> str:
    """Return the directory that holds snapshot blobs."""
    path = os.path.join(get_user_data_dir(), "versions")
    os.makedirs(path, exist_ok=True)
    return path


def get_settings_path() -> str:
    """Return the default settings file location."""
    return os.path.join(get_user_data_dir(), "settings.json")

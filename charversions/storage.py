"""
charversions/storage.py -- Named-blob storage backends.

The snapshot store only needs three operations over a flat namespace of
named blobs: read, write and delete.  Each call is assumed atomic for a
single name; nothing spans several names.

Two backends ship with the package:

    MemoryStorage   dict-backed, for tests and embedding hosts
    FileStorage     one file per blob under a root directory, written with
                    temp-file-then-os.replace()

Any backend failure is raised as ``StorageError``.

Usage::

    from charversions.storage import FileStorage

    storage = FileStorage()               # platform user data dir
    storage.write("_clv_index.json", b"{}")
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from charversions.errors import StorageError
from charversions.utils import write_bytes_atomic

logger = logging.getLogger(__name__)


@runtime_checkable
class StorageBackend(Protocol):
    """Capability required by ``SnapshotStore``."""

    def read(self, name: str) -> bytes | None:
        """Return the blob called *name*, or ``None`` if it does not exist."""

    def write(self, name: str, data: bytes) -> None:
        """Create or replace the blob called *name*."""

    def delete(self, name: str) -> None:
        """Remove the blob called *name*.  Missing blobs are not an error."""


def _check_name(name: str) -> str:
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise StorageError(f"'{name}' is not a valid blob name.")
    return name


class MemoryStorage:
    """In-memory backend.  Each instance is fully independent."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def read(self, name: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(_check_name(name))

    def write(self, name: str, data: bytes) -> None:
        with self._lock:
            self._blobs[_check_name(name)] = bytes(data)

    def delete(self, name: str) -> None:
        with self._lock:
            self._blobs.pop(_check_name(name), None)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)


class FileStorage:
    """Filesystem backend storing each blob as ``<root>/<name>``.

    Parameters
    ----------
    root : str or pathlib.Path, optional
        Directory holding the blobs.  Defaults to the ``versions``
        directory under the platform user data directory.
    """

    def __init__(self, root: str | os.PathLike | None = None):
        if root is None:
            from charversions.paths import get_storage_dir
            root = get_storage_dir()
        self.root = Path(root).resolve()

    def _path(self, name: str) -> Path:
        return self.root / _check_name(name)

    def read(self, name: str) -> bytes | None:
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(
                f"Could not read '{name}' from {self.root}. Technical detail: {exc}"
            ) from exc

    def write(self, name: str, data: bytes) -> None:
        try:
            write_bytes_atomic(self._path(name), data)
        except OSError as exc:
            raise StorageError(
                f"Could not save '{name}' to {self.root}. There may be a disk space "
                f"or permissions issue. Technical detail: {exc}"
            ) from exc

    def delete(self, name: str) -> None:
        try:
            os.remove(self._path(name))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(
                f"Could not delete '{name}' from {self.root}. It may be in use by "
                f"another program. Technical detail: {exc}"
            ) from exc

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_file() and not p.name.endswith(".tmp"))

"""Filesystem storage for uploaded cover images."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from ingestion.errors import StorageError

logger = logging.getLogger(__name__)


class BlobExists(StorageError):
    message = "file already exists"


class BlobNotFound(StorageError):
    message = "file does not exist"


class BlobStore:
    """Save, delete and replace files under a single upload directory.

    Every operation runs under one lock so concurrent item pipelines never
    observe a half-written file.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, filename: str) -> Path:
        name = str(filename or "").strip()
        if not name:
            raise StorageError("empty filename")
        if Path(name).name != name or name in {".", ".."}:
            raise StorageError(f"invalid filename: {name!r}")
        return self._root / name

    def exists(self, filename: str) -> bool:
        return self._path_for(filename).exists()

    def save(self, data: bytes, filename: str) -> str:
        if not data:
            raise StorageError("empty data")
        path = self._path_for(filename)
        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            try:
                with open(path, "xb") as handle:
                    handle.write(data)
            except FileExistsError as exc:
                raise BlobExists(filename=path.name) from exc
            except OSError as exc:
                raise StorageError(f"failed to write {path.name}: {exc}") from exc
        logger.debug("Saved %s (%d bytes)", path.name, len(data))
        return path.name

    def delete(self, filename: str) -> None:
        path = self._path_for(filename)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError as exc:
                raise BlobNotFound(filename=path.name) from exc
            except OSError as exc:
                raise StorageError(f"failed to delete {path.name}: {exc}") from exc
        logger.debug("Deleted %s", path.name)

    def replace(self, data: bytes, filename: str) -> str:
        """Atomically overwrite ``filename`` through a temporary sibling."""

        if not data:
            raise StorageError("empty data")
        path = self._path_for(filename)
        tmp_path = path.with_name(f"{path.name}.tmp")
        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            try:
                tmp_path.write_bytes(data)
                os.replace(tmp_path, path)
            except OSError as exc:
                tmp_path.unlink(missing_ok=True)
                raise StorageError(f"failed to replace {path.name}: {exc}") from exc
        return path.name


__all__ = ["BlobExists", "BlobNotFound", "BlobStore"]

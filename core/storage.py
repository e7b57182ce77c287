"""
String-only key-value stores backing the stored-credential cache.

Two backends share the same three-method contract (get/set/remove):

    MemoryStorage   - dict in process memory, lost on restart
    JsonFileStorage - one JSON object on disk, survives restarts

Values are always strings, mirroring browser local storage: callers do their
own serialization. Backend failures raise StorageError; the cache above
decides what to do with them.

Thread Safety:
    Both backends guard their state with a threading.Lock. JsonFileStorage
    writes to a temporary file and renames it over the target so a crash
    never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from .exceptions import StorageError
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


class MemoryStorage:
    """In-process key-value storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError("write", key, "only string values can be stored")
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return sorted(self._data)


class JsonFileStorage:
    """
    Key-value storage persisted as a single JSON object file.

    The file is loaded lazily on first access and rewritten on every change.
    A missing file is an empty store, and so is a file that is not a JSON
    object (the next write replaces it). I/O failures raise StorageError.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: Optional[Dict[str, str]] = None

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load(key).get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError("write", key, "only string values can be stored")
        with self._lock:
            data = dict(self._load(key))
            data[key] = value
            self._flush(key, data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load(key)
            if key not in data:
                return
            data = dict(data)
            del data[key]
            self._flush(key, data)

    def keys(self):
        with self._lock:
            return sorted(self._load(""))

    def _load(self, key: str) -> Dict[str, str]:
        """Return the current mapping, reading the file on first use."""
        if self._data is not None:
            return self._data

        if not self._path.exists():
            self._data = {}
            return self._data

        try:
            raw = self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError("read", key, str(e))

        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Credential file {self._path} is corrupted, starting empty: {e}")
            data = {}

        if not isinstance(data, dict):
            logger.warning(f"Credential file {self._path} does not hold an object, starting empty")
            data = {}

        # Non-string values cannot have been written by us - drop them
        self._data = {k: v for k, v in data.items() if isinstance(v, str)}
        return self._data

    def _flush(self, key: str, data: Dict[str, str]) -> None:
        """Atomically replace the storage file with ``data``."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=str(self._path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, ensure_ascii=False)
                os.replace(tmp_name, self._path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageError("write", key, str(e))

        # Only publish the new mapping once it is on disk
        self._data = data


def create_storage(backend: str, path: Optional[str] = None):
    """
    Build the configured storage backend.

    Args:
        backend: "file" or "memory"
        path: File location for the "file" backend

    Raises:
        ValueError: If the backend name is unknown or the path is missing
    """
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        if not path:
            raise ValueError("path is required for file credential storage")
        return JsonFileStorage(path)
    raise ValueError(f"Unknown credential storage backend: {backend}")

"""
Durable key-value storage for session snapshots.

A synchronous get/set/remove interface with an in-memory implementation
for tests and a JSON-file implementation for the CLI.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a snapshot cannot be read or written."""

    def __init__(self, message: str, key: str, cause: Exception | None = None):
        self.key = key
        self.cause = cause
        super().__init__(f"Storage '{key}': {message}")


class KeyValueStore(Protocol):
    """Synchronous key-value store holding JSON-compatible values."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryStore:
    """Key-value store backed by a dict. Values are copied through JSON."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError("Value is not JSON serializable", key, cause=e) from e

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileStore:
    """
    Key-value store keeping one JSON file per key in a directory.

    Writes go to a temporary file that replaces the target atomically, so a
    crash never leaves a half-written snapshot.
    """

    _UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{self._UNSAFE.sub('_', key)}.json"

    def get(self, key: str) -> Any | None:
        """
        Read a value.

        Returns:
            The decoded value, or None when the key has never been written.

        Raises:
            PersistenceError: If the file exists but cannot be read or decoded.
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PersistenceError("Stored value is unreadable", key, cause=e) from e

    def set(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(value, ensure_ascii=False)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError("Value could not be written", key, cause=e) from e

    def remove(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError("Value could not be removed", key, cause=e) from e

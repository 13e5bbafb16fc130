"""
On-device key/value backends.

Backends raise StorageError on any failure; callers that must never fail
(TokenStore, CookieJarAdapter) catch it.
"""
import os
import json
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

from portal_client.core.errors import StorageError
from portal_client.utils.security import Cipher


class KeyValueStore(ABC):
    """String key/value persistence."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryStore(KeyValueStore):
    """Process-local store; also the degraded mode when disk is unavailable."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return list(self._data)


class EncryptedFileStore(KeyValueStore):
    """
    JSON document on disk, one entry per key, values Fernet-encrypted.

    The file is re-read on every access so a new process (or a second
    store over the same path) sees the latest writes. Writes go through a
    temporary file and ``os.replace``.
    """

    def __init__(self, path: Path, cipher: Optional[Cipher] = None):
        self.path = Path(path)
        self._cipher = cipher
        self._lock = Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(document, dict):
            raise StorageError(f"Corrupt storage file: {self.path}")
        return document

    def _write(self, document: Dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(document, f)
            if hasattr(os, 'chmod'):
                os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            raw = self._read().get(key)
        if raw is None:
            return None
        return self._cipher.decrypt(raw) if self._cipher else raw

    def set(self, key: str, value: str) -> None:
        stored = self._cipher.encrypt(value) if self._cipher else value
        with self._lock:
            document = self._read()
            document[key] = stored
            self._write(document)

    def delete(self, key: str) -> None:
        with self._lock:
            document = self._read()
            if key in document:
                del document[key]
                self._write(document)

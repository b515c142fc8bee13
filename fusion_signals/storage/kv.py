"""Key/value store interface and the in-process implementation."""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Byte-oriented key/value store used for model persistence.

    Implementations raise ``PersistenceError`` when the backend fails.
    A missing key is not an error: ``get`` returns None.
    """

    def get(self, key: str) -> bytes | None:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def delete(self, key: str) -> bool:
        """Delete a key; returns True if it existed."""
        ...


class InMemoryStore:
    """Dict-backed store. Thread-safe; contents are lost with the process."""

    def __init__(self):
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

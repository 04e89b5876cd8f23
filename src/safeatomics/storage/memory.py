"""In-memory implementation of VersionedKvStore.

This provides a thread-safe, in-memory implementation that mimics
the atomic check-and-set semantics of a transactional key-value store.
"""

import copy
import threading
from collections.abc import Sequence
from typing import Any

from .versioned import ABSENT, Entry, Key, KeyPart, VersionToken, normalize_key


class InMemoryTransaction:
    """Buffered checks and writes against an InMemoryKvStore."""

    def __init__(self, store: "InMemoryKvStore"):
        self._store = store
        self._checks: list[tuple[Key, VersionToken]] = []
        self._mutations: list[tuple[Key, bool, Any]] = []
        self._committed = False

    def check(self, key: Sequence[KeyPart], version: VersionToken) -> "InMemoryTransaction":
        self._checks.append((normalize_key(key), version))
        return self

    def set(self, key: Sequence[KeyPart], value: Any) -> "InMemoryTransaction":
        # Copy now so later mutation of value by the caller is not committed
        self._mutations.append((normalize_key(key), True, copy.deepcopy(value)))
        return self

    def delete(self, key: Sequence[KeyPart]) -> "InMemoryTransaction":
        self._mutations.append((normalize_key(key), False, None))
        return self

    def commit(self) -> bool:
        if self._committed:
            raise RuntimeError("Transaction already committed")
        self._committed = True
        return self._store._apply(self._checks, self._mutations)


class InMemoryKvStore:
    """In-memory versioned key-value store for testing.

    This implementation is thread-safe and provides the same atomic
    multi-key check-and-set semantics as a transactional store, making
    it perfect for unit tests. Values are deep-copied on write and read
    so callers never share state with the store.
    """

    def __init__(self):
        """Initialize empty store with thread safety."""
        self._data: dict[Key, Any] = {}
        self._versions: dict[Key, int] = {}
        self._version_counter = 0
        self._lock = threading.Lock()

    def batch_get(self, keys: Sequence[Sequence[KeyPart]]) -> list[Entry]:
        """Get current values and versions, in input order."""
        normalized = [normalize_key(key) for key in keys]
        with self._lock:
            return [self._entry(key) for key in normalized]

    def get(self, key: Sequence[KeyPart]) -> Entry:
        """Get current value and version for one key."""
        return self.batch_get([key])[0]

    def atomic(self) -> InMemoryTransaction:
        """Begin a transaction."""
        return InMemoryTransaction(self)

    def set(self, key: Sequence[KeyPart], value: Any) -> VersionToken:
        """Unconditionally write a value."""
        key = normalize_key(key)
        with self._lock:
            self._write(key, copy.deepcopy(value))
            return VersionToken(self._versions[key])

    def delete(self, key: Sequence[KeyPart]) -> bool:
        """Delete a key."""
        key = normalize_key(key)
        with self._lock:
            if key not in self._data:
                return False

            del self._data[key]
            del self._versions[key]
            return True

    def list_keys(self, prefix: Sequence[KeyPart] = ()) -> list[Key]:
        """List keys starting with the given parts."""
        prefix = tuple(prefix)
        with self._lock:
            return sorted(
                (key for key in self._data if key[: len(prefix)] == prefix),
                key=repr,
            )

    def clear(self) -> None:
        """Clear all data (useful for tests)."""
        with self._lock:
            self._data.clear()
            self._versions.clear()
            self._version_counter = 0

    def close(self) -> None:
        """Nothing to release; present for interface parity."""

    def _entry(self, key: Key) -> Entry:
        if key not in self._data:
            return Entry(key=key, value=None, version=ABSENT)
        return Entry(
            key=key,
            value=copy.deepcopy(self._data[key]),
            version=VersionToken(self._versions[key]),
        )

    def _write(self, key: Key, value: Any) -> None:
        self._version_counter += 1
        self._data[key] = value
        self._versions[key] = self._version_counter

    def _apply(
        self,
        checks: list[tuple[Key, VersionToken]],
        mutations: list[tuple[Key, bool, Any]],
    ) -> bool:
        """Verify all checks and apply all mutations under one lock."""
        with self._lock:
            for key, version in checks:
                current = self._versions.get(key)
                if current != version.value:
                    return False  # Version mismatch

            for key, is_set, value in mutations:
                if is_set:
                    self._write(key, value)
                elif key in self._data:
                    del self._data[key]
                    del self._versions[key]
            return True

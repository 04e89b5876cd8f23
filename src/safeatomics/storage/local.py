"""Local filesystem implementation of VersionedKvStore.

All entries live in a single JSON document. Every operation re-reads the
file under an advisory lock, so several processes can share one store and
still get atomic multi-key commits.
"""

import json
import logging
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..errors import InvalidKeyError
from ..storage_utils import atomic_write, file_lock, safe_read
from .versioned import ABSENT, Entry, Key, KeyPart, VersionToken, normalize_key

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


def _json_key(key: Sequence[KeyPart]) -> Key:
    """Normalize a key and make sure it survives a JSON round trip."""
    key = normalize_key(key)
    for part in key:
        if isinstance(part, bytes):
            raise InvalidKeyError(f"Local store keys cannot contain bytes: {key!r}")
    return key


class _Document:
    """Decoded contents of the store file."""

    def __init__(self, raw: bytes | None):
        self.counter = 0
        self.entries: dict[Key, tuple[Any, int]] = {}
        if raw is None:
            return

        data = json.loads(raw.decode("utf-8"))
        self.counter = data["version_counter"]
        for item in data["entries"]:
            self.entries[tuple(item["key"])] = (item["value"], item["version"])

    def entry(self, key: Key) -> Entry:
        if key not in self.entries:
            return Entry(key=key, value=None, version=ABSENT)
        value, version = self.entries[key]
        return Entry(key=key, value=value, version=VersionToken(version))

    def write(self, key: Key, value: Any) -> int:
        self.counter += 1
        self.entries[key] = (value, self.counter)
        return self.counter

    def encode(self) -> bytes:
        data = {
            "format": _FORMAT_VERSION,
            "version_counter": self.counter,
            "entries": [
                {"key": list(key), "value": value, "version": version}
                for key, (value, version) in self.entries.items()
            ],
        }
        return json.dumps(data, indent=2).encode("utf-8")


class LocalFileTransaction:
    """Buffered checks and writes against a LocalFileKvStore."""

    def __init__(self, store: "LocalFileKvStore"):
        self._store = store
        self._checks: list[tuple[Key, VersionToken]] = []
        self._mutations: list[tuple[Key, bool, Any]] = []

    def check(self, key: Sequence[KeyPart], version: VersionToken) -> "LocalFileTransaction":
        self._checks.append((_json_key(key), version))
        return self

    def set(self, key: Sequence[KeyPart], value: Any) -> "LocalFileTransaction":
        # Encode eagerly so unserializable values fail before commit
        encoded = json.dumps(value)
        self._mutations.append((_json_key(key), True, json.loads(encoded)))
        return self

    def delete(self, key: Sequence[KeyPart]) -> "LocalFileTransaction":
        self._mutations.append((_json_key(key), False, None))
        return self

    def commit(self) -> bool:
        return self._store._apply(self._checks, self._mutations)


class LocalFileKvStore:
    """Versioned key-value store backed by one JSON file.

    Useful for:
    - Development and testing
    - Command-line use
    - Several local processes sharing counters or balances

    Values must be JSON-serializable; tuples come back as lists.
    """

    def __init__(self, path: str | Path = "/tmp/safeatomics/store.json"):
        """Initialize local store.

        Args:
            path: Store file, created on first write
        """
        self.path = Path(path)
        self.lock_path = self.path.with_name(f".{self.path.name}.lock")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._thread_lock = threading.Lock()
        logger.info(f"Initialized local store at: {self.path}")

    def batch_get(self, keys: Sequence[Sequence[KeyPart]]) -> list[Entry]:
        """Get current values and versions, in input order."""
        normalized = [_json_key(key) for key in keys]
        with self._thread_lock, file_lock(self.lock_path, shared=True):
            doc = self._load()
        return [doc.entry(key) for key in normalized]

    def get(self, key: Sequence[KeyPart]) -> Entry:
        """Get current value and version for one key."""
        return self.batch_get([key])[0]

    def atomic(self) -> LocalFileTransaction:
        """Begin a transaction."""
        return LocalFileTransaction(self)

    def set(self, key: Sequence[KeyPart], value: Any) -> VersionToken:
        """Unconditionally write a value."""
        key = _json_key(key)
        value = json.loads(json.dumps(value))
        with self._thread_lock, file_lock(self.lock_path):
            doc = self._load()
            version = doc.write(key, value)
            self._save(doc)
        return VersionToken(version)

    def delete(self, key: Sequence[KeyPart]) -> bool:
        """Delete a key."""
        key = _json_key(key)
        with self._thread_lock, file_lock(self.lock_path):
            doc = self._load()
            if key not in doc.entries:
                return False
            del doc.entries[key]
            self._save(doc)
        logger.debug(f"Deleted key: {key}")
        return True

    def list_keys(self, prefix: Sequence[KeyPart] = ()) -> list[Key]:
        """List keys starting with the given parts."""
        prefix = tuple(prefix)
        with self._thread_lock, file_lock(self.lock_path, shared=True):
            doc = self._load()
        return sorted(
            (key for key in doc.entries if key[: len(prefix)] == prefix),
            key=repr,
        )

    def close(self) -> None:
        """Nothing is held open between operations."""

    def _load(self) -> _Document:
        try:
            return _Document(safe_read(self.path))
        except (json.JSONDecodeError, KeyError, UnicodeDecodeError) as e:
            raise ValueError(f"Corrupt store file {self.path}: {e}")

    def _save(self, doc: _Document) -> None:
        atomic_write(self.path, doc.encode())

    def _apply(
        self,
        checks: list[tuple[Key, VersionToken]],
        mutations: list[tuple[Key, bool, Any]],
    ) -> bool:
        with self._thread_lock, file_lock(self.lock_path):
            doc = self._load()
            for key, version in checks:
                current = doc.entries.get(key)
                current_version = current[1] if current else None
                if current_version != version.value:
                    logger.debug(f"Check failed on {key} (expected {version})")
                    return False

            for key, is_set, value in mutations:
                if is_set:
                    doc.write(key, value)
                else:
                    doc.entries.pop(key, None)
            self._save(doc)
            return True

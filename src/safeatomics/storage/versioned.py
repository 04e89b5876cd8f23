"""Versioned key-value protocol for optimistic concurrency control.

This module defines the backend contract the OCC layer is built on:
batched point reads that return version tokens, and atomic transactions
that apply a set of writes only if every version check still holds.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..errors import InvalidKeyError

KeyPart = str | int | float | bool | bytes
Key = tuple[KeyPart, ...]

_KEY_PART_TYPES = (str, int, float, bool, bytes)


def normalize_key(key: Iterable[KeyPart]) -> Key:
    """Convert a key to its canonical immutable form.

    Args:
        key: Ordered sequence of primitive components (list or tuple)

    Returns:
        Key as a tuple, so equality is structural and it can be hashed

    Raises:
        InvalidKeyError: If key is a bare string, empty, or has a
            non-primitive component
    """
    if isinstance(key, (str, bytes)):
        raise InvalidKeyError(f"Key must be a sequence of parts, got {key!r}")

    parts = tuple(key)
    if not parts:
        raise InvalidKeyError("Key must have at least one part")

    for part in parts:
        if not isinstance(part, _KEY_PART_TYPES):
            raise InvalidKeyError(
                f"Key part {part!r} has unsupported type {type(part).__name__}"
            )
    return parts


@dataclass(frozen=True)
class VersionToken:
    """Opaque version identifier for CAS operations.

    The actual value depends on the storage backend. A token whose value
    is None stands for "no entry exists"; checking it at commit time
    asserts the key is still absent.
    """

    value: Any

    @property
    def is_absent(self) -> bool:
        return self.value is None

    def __str__(self) -> str:
        return "absent" if self.is_absent else str(self.value)


ABSENT = VersionToken(None)


@dataclass(frozen=True)
class Entry:
    """One observed backend entry: key, value (None if absent) and version."""

    key: Key
    value: Any
    version: VersionToken

    @property
    def exists(self) -> bool:
        return not self.version.is_absent


@runtime_checkable
class KvTransaction(Protocol):
    """Pending atomic operation against a VersionedKvStore.

    Checks and writes are buffered; nothing touches the store until
    commit() is called.
    """

    def check(self, key: Sequence[KeyPart], version: VersionToken) -> "KvTransaction":
        """Require key to still be at version when committing."""
        ...

    def set(self, key: Sequence[KeyPart], value: Any) -> "KvTransaction":
        """Write value to key when committing."""
        ...

    def delete(self, key: Sequence[KeyPart]) -> "KvTransaction":
        """Remove key when committing."""
        ...

    def commit(self) -> bool:
        """Apply all buffered writes if every check passes.

        Returns:
            True if the writes took effect, False if any checked key
            changed since it was read (nothing is written in that case).

        Note:
            Returns False instead of raising because conflicts are expected
            in concurrent scenarios and should trigger retries.
        """
        ...


@runtime_checkable
class VersionedKvStore(Protocol):
    """Key-value store with versioned reads and atomic multi-key commits.

    Correctness of the OCC layer rests entirely on commit() being atomic
    across every check and write in a transaction.
    """

    def batch_get(self, keys: Sequence[Sequence[KeyPart]]) -> list[Entry]:
        """Read current values and versions.

        Args:
            keys: Keys to read

        Returns:
            One Entry per key, in input order. Missing keys produce an
            Entry with value None and the ABSENT version.
        """
        ...

    def atomic(self) -> KvTransaction:
        """Begin a new transaction."""
        ...

"""Versioned key-value backends for safeatomics."""

import logging

from .local import LocalFileKvStore
from .memory import InMemoryKvStore
from .versioned import ABSENT, Entry, Key, KvTransaction, VersionedKvStore, VersionToken, normalize_key

logger = logging.getLogger(__name__)


def get_backend(backend_type: str = "memory", **kwargs) -> VersionedKvStore:
    """Factory function to get a specific backend.

    Args:
        backend_type: One of "memory", "local"
        **kwargs: Backend-specific configuration

    Returns:
        Backend instance

    Raises:
        ValueError: If backend_type is unknown

    Examples:
        >>> store = get_backend("local", path="/tmp/counters.json")
        >>> store = get_backend("memory")
    """
    if backend_type == "memory":
        logger.info("Using in-memory backend")
        return InMemoryKvStore(**kwargs)
    elif backend_type == "local":
        return LocalFileKvStore(**kwargs)
    else:
        raise ValueError(f"Unknown backend type: {backend_type}")


def get_backend_from_config(config) -> VersionedKvStore:
    """Build the backend described by a SafeAtomicsConfig."""
    if config.backend.type == "local":
        return get_backend("local", path=config.backend.path)
    return get_backend(config.backend.type)


__all__ = [
    "ABSENT",
    "Entry",
    "Key",
    "KvTransaction",
    "VersionToken",
    "VersionedKvStore",
    "InMemoryKvStore",
    "LocalFileKvStore",
    "normalize_key",
    "get_backend",
    "get_backend_from_config",
]

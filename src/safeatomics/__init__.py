"""safeatomics - retrying optimistic multi-key updates for versioned key-value stores."""

from ._version import __version__
from .client import SafeAtomicKv
from .config import SafeAtomicsConfig
from .errors import (
    AbortedError,
    ConfigError,
    InvalidKeyError,
    ResultArityError,
    SafeAtomicsError,
    TooManyRetriesError,
    UpdateFunctionError,
)
from .occ import Abort, SafeAtomicManyResponse, SafeAtomicResponse, UpdateStatus
from .storage import (
    ABSENT,
    Entry,
    InMemoryKvStore,
    LocalFileKvStore,
    VersionedKvStore,
    VersionToken,
    get_backend,
)

__all__ = [
    "SafeAtomicKv",
    "SafeAtomicsConfig",
    "Abort",
    "SafeAtomicManyResponse",
    "SafeAtomicResponse",
    "UpdateStatus",
    "ABSENT",
    "Entry",
    "VersionToken",
    "VersionedKvStore",
    "InMemoryKvStore",
    "LocalFileKvStore",
    "get_backend",
    "SafeAtomicsError",
    "AbortedError",
    "ConfigError",
    "InvalidKeyError",
    "ResultArityError",
    "TooManyRetriesError",
    "UpdateFunctionError",
    "__version__",
]

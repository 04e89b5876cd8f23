"""Optimistic concurrency control: read, compute, commit, retry."""

from .committer import TransactionCommitter
from .compute import Abort, AbortSignal, Computation, Proceed, UpdateComputer, UpdateFn
from .controller import DEFAULT_RETRY_BUDGET, RetryController
from .reader import VersionedReader
from .reporting import (
    COMMIT_FAILED,
    ResultReporter,
    SafeAtomicManyResponse,
    SafeAtomicResponse,
    UpdateStatus,
)

__all__ = [
    "Abort",
    "AbortSignal",
    "Computation",
    "Proceed",
    "UpdateComputer",
    "UpdateFn",
    "VersionedReader",
    "TransactionCommitter",
    "RetryController",
    "DEFAULT_RETRY_BUDGET",
    "ResultReporter",
    "SafeAtomicManyResponse",
    "SafeAtomicResponse",
    "UpdateStatus",
    "COMMIT_FAILED",
]

"""Caller-facing responses for update_many / update_one."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import AbortedError, TooManyRetriesError

COMMIT_FAILED = "Failed to commit transaction"


class UpdateStatus(str, Enum):
    """Terminal state of one update_many call."""

    COMMITTED = "committed"
    ABORTED = "aborted"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class SafeAtomicManyResponse:
    """Outcome of update_many.

    On success values holds the committed values. On abort or exhausted
    retries it holds the values as read on the final attempt.
    """

    ok: bool
    error: str | None
    values: list
    status: UpdateStatus = UpdateStatus.COMMITTED
    attempts: int = 0
    conflicts: int = 0

    def raise_for_status(self) -> "SafeAtomicManyResponse":
        """Raise if the update did not commit, otherwise return self."""
        if self.status == UpdateStatus.ABORTED:
            raise AbortedError(self.error, self.values)
        if self.status == UpdateStatus.EXHAUSTED:
            raise TooManyRetriesError(self.error or COMMIT_FAILED, self.values)
        return self


@dataclass(frozen=True)
class SafeAtomicResponse:
    """Outcome of update_one."""

    ok: bool
    error: str | None
    value: Any
    status: UpdateStatus = UpdateStatus.COMMITTED
    attempts: int = 0
    conflicts: int = 0

    def raise_for_status(self) -> "SafeAtomicResponse":
        """Raise if the update did not commit, otherwise return self."""
        if self.status == UpdateStatus.ABORTED:
            raise AbortedError(self.error, [self.value])
        if self.status == UpdateStatus.EXHAUSTED:
            raise TooManyRetriesError(self.error or COMMIT_FAILED, [self.value])
        return self


class ResultReporter:
    """Render terminal states of the retry loop.

    attempts counts commit round-trips. An abort never commits, so an
    aborted call reports only the conflicts that preceded it.
    """

    @staticmethod
    def committed(values: list, attempts: int) -> SafeAtomicManyResponse:
        return SafeAtomicManyResponse(
            ok=True,
            error=None,
            values=values,
            status=UpdateStatus.COMMITTED,
            attempts=attempts,
            conflicts=attempts - 1,
        )

    @staticmethod
    def aborted(reason: str | None, original_values: list, attempts: int) -> SafeAtomicManyResponse:
        return SafeAtomicManyResponse(
            ok=False,
            error=reason,
            values=original_values,
            status=UpdateStatus.ABORTED,
            attempts=attempts,
            conflicts=attempts,
        )

    @staticmethod
    def exhausted(original_values: list, attempts: int) -> SafeAtomicManyResponse:
        return SafeAtomicManyResponse(
            ok=False,
            error=COMMIT_FAILED,
            values=original_values,
            status=UpdateStatus.EXHAUSTED,
            attempts=attempts,
            conflicts=attempts,
        )

    @staticmethod
    def single(response: SafeAtomicManyResponse) -> SafeAtomicResponse:
        """Unwrap a one-key response."""
        return SafeAtomicResponse(
            ok=response.ok,
            error=response.error,
            value=response.values[0],
            status=response.status,
            attempts=response.attempts,
            conflicts=response.conflicts,
        )

"""Invoking the caller's update function for one OCC attempt.

An update function receives the current values and an abort callable:

    def transfer(values, abort):
        src, dst = values
        if src < 30:
            return Abort("insufficient funds")
        return [src - 30, dst + 30]

Returning ``Abort(reason)`` and calling ``abort(reason)`` are equivalent.
The callable exists for functions written in callback style; it is a new
object on every attempt, so no abort state leaks from one attempt into the
next.
"""

import copy
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..errors import ResultArityError, UpdateFunctionError
from ..storage.versioned import Entry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Abort:
    """Returned by an update function to decline the update."""

    reason: str | None = None


class AbortSignal:
    """Callable handed to the update function for callback-style aborts.

    Calling it more than once is allowed; the last non-empty reason wins.
    """

    def __init__(self):
        self.aborted = False
        self.reason: str | None = None

    def __call__(self, reason: str | None = None) -> None:
        self.aborted = True
        if reason:
            self.reason = reason


UpdateFn = Callable[[list, AbortSignal], Sequence[Any] | Abort | None]


@dataclass(frozen=True)
class Proceed:
    """Values to commit for this attempt."""

    values: list


@dataclass(frozen=True)
class Computation:
    """Outcome of one call to the update function."""

    original_values: list
    decision: Proceed | Abort

    @property
    def aborted(self) -> bool:
        return isinstance(self.decision, Abort)


def _is_value_sequence(result: Any) -> bool:
    return isinstance(result, Sequence) and not isinstance(
        result, (str, bytes, bytearray, Mapping)
    )


class UpdateComputer:
    """Run the update function once against a freshly read batch."""

    def __init__(self, update_fn: UpdateFn):
        self.update_fn = update_fn

    def compute(self, batch: list[Entry]) -> Computation:
        """Call the update function and validate what it returned.

        Args:
            batch: Entries read for this attempt

        Returns:
            Computation holding a deep copy of the values as read, and
            either the values to commit or the abort decision.

        Raises:
            UpdateFunctionError: If nothing usable was returned
            ResultArityError: If the result count differs from the key count
        """
        values = [entry.value for entry in batch]
        # Keep a private copy; the function may mutate what it is given
        original_values = copy.deepcopy(values)

        signal = AbortSignal()
        result = self.update_fn(values, signal)

        if isinstance(result, Abort):
            logger.debug(f"Update aborted by return value: {result.reason}")
            return Computation(original_values, result)

        # Anything returned alongside an abort() call is discarded
        if signal.aborted:
            logger.debug(f"Update aborted by callback: {signal.reason}")
            return Computation(original_values, Abort(signal.reason))

        if result is None or not _is_value_sequence(result):
            raise UpdateFunctionError("update function must return a value for each key")

        if any(isinstance(value, Abort) for value in result):
            raise UpdateFunctionError("Abort must be returned on its own, not as a value")

        if len(result) != len(batch):
            raise ResultArityError(
                f"result count must match key count (got {len(result)}, expected {len(batch)})"
            )

        return Computation(original_values, Proceed(list(result)))

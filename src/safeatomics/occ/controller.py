"""Retry loop for optimistic multi-key updates.

Handles the pattern of:
1. Read current values and versions
2. Apply the update function
3. Commit with a version check on every key
4. On conflict, start over from a fresh read until the retry budget runs out
"""

import logging
import random
import time
from collections.abc import Sequence

from ..storage.versioned import Key, VersionedKvStore, normalize_key
from .committer import TransactionCommitter
from .compute import UpdateComputer, UpdateFn
from .reader import VersionedReader
from .reporting import ResultReporter, SafeAtomicManyResponse

logger = logging.getLogger(__name__)

DEFAULT_RETRY_BUDGET = 10


class RetryController:
    """Drive read, compute and commit attempts for one logical update.

    Holds no state between calls; concurrent callers only contend through
    the backend's check-on-commit.
    """

    def __init__(self, store: VersionedKvStore, initial_delay: float = 0.0):
        """Initialize controller.

        Args:
            store: Backend to read from and commit to
            initial_delay: Backoff before the first retry in seconds
                (doubles each retry, plus jitter). 0 retries immediately.
        """
        self.reader = VersionedReader(store)
        self.committer = TransactionCommitter(store)
        self.initial_delay = initial_delay

    def run(
        self,
        keys: Sequence[Sequence],
        update_fn: UpdateFn,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
    ) -> SafeAtomicManyResponse:
        """Update keys atomically, retrying on conflict.

        Args:
            keys: Keys to update, same keys and order on every attempt
            update_fn: Function taking (values, abort) and returning new
                values, or Abort(reason)
            retry_budget: Retries allowed after the first failed commit

        Returns:
            Committed, aborted or exhausted response

        Raises:
            UpdateFunctionError: If update_fn returns something unusable
            ValueError: If retry_budget is negative
        """
        if retry_budget < 0:
            raise ValueError(f"retry_budget must be >= 0, got {retry_budget}")

        normalized: list[Key] = [normalize_key(key) for key in keys]
        computer = UpdateComputer(update_fn)
        remaining = retry_budget
        attempts = 0

        while True:
            # Fresh batch every attempt; stale versions would always conflict
            batch = self.reader.read(normalized)
            computation = computer.compute(batch)

            if computation.aborted:
                return ResultReporter.aborted(
                    computation.decision.reason, computation.original_values, attempts
                )

            new_values = computation.decision.values
            attempts += 1
            if self.committer.commit(batch, new_values):
                logger.debug(f"Committed {len(normalized)} keys on attempt {attempts}")
                return ResultReporter.committed(new_values, attempts)

            if remaining == 0:
                logger.warning(
                    f"Conflict on {normalized} after {attempts} attempts, no more retries"
                )
                return ResultReporter.exhausted(computation.original_values, attempts)

            remaining -= 1
            logger.debug(
                f"Conflict on {normalized}, attempt {attempts}/{retry_budget + 1}, retrying"
            )
            self._backoff(attempts)

    def _backoff(self, attempt: int) -> None:
        """Sleep with exponential backoff and jitter, if enabled."""
        if self.initial_delay <= 0:
            return

        delay = (2 ** (attempt - 1)) * self.initial_delay
        jitter = random.uniform(0, self.initial_delay)
        time.sleep(delay + jitter)

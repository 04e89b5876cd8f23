"""Atomic compare-and-set commit for one OCC attempt."""

import logging
from collections.abc import Sequence
from typing import Any

from ..storage.versioned import Entry, VersionedKvStore

logger = logging.getLogger(__name__)


class TransactionCommitter:
    """Commit new values only if no key changed since it was read."""

    def __init__(self, store: VersionedKvStore):
        self.store = store

    def commit(self, batch: list[Entry], new_values: Sequence[Any]) -> bool:
        """Check every entry's version and set its new value in one transaction.

        Args:
            batch: Entries read at the start of this attempt
            new_values: Value to write for each entry, same order

        Returns:
            True if committed, False if any key was modified concurrently.
            A False result is the only source of conflicts in this layer.
        """
        if len(new_values) != len(batch):
            raise ValueError("new_values must match the batch length")

        tx = self.store.atomic()
        for entry, value in zip(batch, new_values):
            tx.check(entry.key, entry.version)
            tx.set(entry.key, value)

        ok = tx.commit()
        if not ok:
            logger.debug(f"Commit conflict on keys {[entry.key for entry in batch]}")
        return ok

"""Versioned reads for one OCC attempt."""

import logging
from collections.abc import Sequence

from ..storage.versioned import Entry, Key, VersionedKvStore

logger = logging.getLogger(__name__)


class VersionedReader:
    """Fetch current values and version tokens for a batch of keys.

    Backend errors propagate unchanged; this layer never retries reads.
    """

    def __init__(self, store: VersionedKvStore):
        self.store = store

    def read(self, keys: Sequence[Key]) -> list[Entry]:
        """Read a fresh batch, one Entry per key in input order."""
        batch = self.store.batch_get(keys)
        if len(batch) != len(keys):
            raise RuntimeError(
                f"Backend returned {len(batch)} entries for {len(keys)} keys"
            )
        logger.debug(f"Read {len(batch)} entries: {[str(e.version) for e in batch]}")
        return list(batch)

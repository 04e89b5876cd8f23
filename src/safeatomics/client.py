"""SafeAtomicKv: a versioned key-value store with retrying atomic updates.

Wraps any VersionedKvStore and adds update_many / update_one, which keep
re-reading and re-applying an update function until its result commits
without interference, the function aborts, or the retry budget runs out.

Examples:
    >>> from safeatomics import InMemoryKvStore, SafeAtomicKv
    >>> kv = SafeAtomicKv(InMemoryKvStore())
    >>> kv.set(["balance", "alice"], 100)
    True
    >>> kv.update_one(["balance", "alice"], lambda value, abort: value - 30).value
    70
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from .config import SafeAtomicsConfig
from .occ.compute import Abort, AbortSignal, UpdateFn
from .occ.controller import DEFAULT_RETRY_BUDGET, RetryController
from .occ.reporting import ResultReporter, SafeAtomicManyResponse, SafeAtomicResponse
from .storage import get_backend_from_config
from .storage.versioned import Entry, KvTransaction, VersionedKvStore, VersionToken

logger = logging.getLogger(__name__)

SingleUpdateFn = Callable[[Any, AbortSignal], Any]


class SafeAtomicKv:
    """Versioned store plus optimistic multi-key updates.

    The wrapped store is used as-is; reads, writes and transactions that
    don't need retries pass straight through.
    """

    def __init__(
        self,
        store: VersionedKvStore,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
        initial_delay: float = 0.0,
    ):
        """Initialize client.

        Args:
            store: Backend honoring the VersionedKvStore contract
            retry_budget: Default retries for update calls
            initial_delay: Backoff before the first retry in seconds, 0 for none
        """
        if retry_budget < 0:
            raise ValueError(f"retry_budget must be >= 0, got {retry_budget}")
        self.store = store
        self.retry_budget = retry_budget
        self._controller = RetryController(store, initial_delay=initial_delay)

    @classmethod
    def from_config(cls, config: SafeAtomicsConfig | None = None) -> "SafeAtomicKv":
        """Build a client and its backend from configuration."""
        config = config or SafeAtomicsConfig.load()
        return cls(
            get_backend_from_config(config),
            retry_budget=config.retry.retry_budget,
            initial_delay=config.retry.initial_delay,
        )

    def update_many(
        self,
        keys: Sequence[Sequence],
        update_fn: UpdateFn,
        retry_budget: int | None = None,
    ) -> SafeAtomicManyResponse:
        """Atomically update several keys.

        update_fn is called with the latest values (None for missing keys)
        and an abort callable. It returns one new value per key, or
        Abort(reason) / calls abort(reason) to leave everything unchanged.
        It may run several times, once per attempt, always on fresh values.

        Args:
            keys: Keys to update
            update_fn: Update function (values, abort) -> new values
            retry_budget: Retries after the first failed commit. Defaults
                to the client's budget.

        Returns:
            Response with ok, error and values

        Raises:
            UpdateFunctionError: If update_fn returns no values or the
                wrong number of values
        """
        budget = self.retry_budget if retry_budget is None else retry_budget
        return self._controller.run(keys, update_fn, budget)

    def update_one(
        self,
        key: Sequence,
        update_fn: SingleUpdateFn,
        retry_budget: int | None = None,
    ) -> SafeAtomicResponse:
        """Atomically update one key. See update_many.

        Same as update_many([key], lambda values, abort: [update_fn(values[0], abort)]),
        except that an Abort returned by update_fn is passed through as the
        abort decision instead of being wrapped in a list (which update_many
        rejects with UpdateFunctionError).
        """

        def update_values(values: list, abort: AbortSignal):
            result = update_fn(values[0], abort)
            if isinstance(result, Abort):
                return result
            return [result]

        response = self.update_many([key], update_values, retry_budget)
        return ResultReporter.single(response)

    def get(self, key: Sequence) -> Entry:
        return self.store.batch_get([key])[0]

    def get_many(self, keys: Sequence[Sequence]) -> list[Entry]:
        return self.store.batch_get(keys)

    def set(self, key: Sequence, value: Any) -> bool:
        """Write a value unconditionally."""
        return self.store.atomic().set(key, value).commit()

    def delete(self, key: Sequence) -> bool:
        """Delete a key.

        Returns:
            True if deleted, False if it didn't exist or changed meanwhile.
        """
        entry = self.get(key)
        if not entry.exists:
            return False
        return self.store.atomic().check(key, entry.version).delete(key).commit()

    def atomic(self) -> KvTransaction:
        """Begin a raw transaction on the wrapped store."""
        return self.store.atomic()

    def check_and_set(self, key: Sequence, version: VersionToken, value: Any) -> bool:
        """Single compare-and-set without retries."""
        return self.store.atomic().check(key, version).set(key, value).commit()

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "SafeAtomicKv":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

"""Tests for update_many / update_one retry semantics."""

import threading

import pytest

from safeatomics import (
    Abort,
    AbortedError,
    InMemoryKvStore,
    ResultArityError,
    SafeAtomicKv,
    TooManyRetriesError,
    UpdateFunctionError,
    UpdateStatus,
)

from helpers import RacingStore


def transfer(amount):
    """Move amount from the first balance to the second, or abort."""

    def update(values, abort):
        src, dst = values
        if src < amount:
            abort("insufficient funds")
            return values
        return [src - amount, dst + amount]

    return update


class TestUpdateMany:
    """Happy-path and abort behaviour."""

    def test_balance_transfer(self, kv):
        kv.set(["A"], 100)
        kv.set(["B"], 50)

        response = kv.update_many([["A"], ["B"]], transfer(30))

        assert response.ok
        assert response.error is None
        assert response.values == [70, 80]
        assert [e.value for e in kv.get_many([["A"], ["B"]])] == [70, 80]

    def test_balance_transfer_insufficient_funds(self, kv):
        kv.set(["A"], 20)
        kv.set(["B"], 50)

        response = kv.update_many([["A"], ["B"]], transfer(30))

        assert not response.ok
        assert response.error == "insufficient funds"
        assert response.values == [20, 50]
        assert response.status == UpdateStatus.ABORTED
        assert [e.value for e in kv.get_many([["A"], ["B"]])] == [20, 50]

    def test_first_attempt_succeeds_without_contention(self, kv):
        kv.set(["x"], 1)

        response = kv.update_many([["x"], ["y"]], lambda values, abort: ["a", "b"], retry_budget=0)

        assert response.ok
        assert response.attempts == 1
        assert response.conflicts == 0

    def test_missing_keys_read_as_none(self, kv):
        seen = []

        def update(values, abort):
            seen.append(list(values))
            return ["created", "also created"]

        response = kv.update_many([["new", 1], ["new", 2]], update)

        assert response.ok
        assert seen == [[None, None]]
        assert kv.get(["new", 1]).value == "created"

    def test_abort_discards_returned_values(self, kv):
        kv.set(["k1"], "value 1")
        kv.set(["k2"], "value 2")

        def update(values, abort):
            abort()
            return ["new value 1", "new value 2"]

        response = kv.update_many([["k1"], ["k2"]], update, retry_budget=3)

        assert not response.ok
        assert response.error is None
        assert response.values == ["value 1", "value 2"]
        assert response.attempts == 0
        assert [e.value for e in kv.get_many([["k1"], ["k2"]])] == ["value 1", "value 2"]

    def test_abort_by_return_value(self, kv):
        kv.set(["k"], 5)

        response = kv.update_many([["k"]], lambda values, abort: Abort("nope"))

        assert not response.ok
        assert response.error == "nope"
        assert response.values == [5]
        assert kv.get(["k"]).value == 5

    def test_last_abort_reason_wins(self, kv):
        def update(values, abort):
            abort("first")
            abort("second")
            abort()
            return values

        response = kv.update_many([["k"]], update)
        assert response.error == "second"

    def test_aborted_values_are_original_even_if_mutated(self, kv):
        kv.set(["doc"], {"items": [1]})

        def update(values, abort):
            values[0]["items"].append(2)
            abort("changed my mind")
            return values

        response = kv.update_many([["doc"]], update)

        assert response.values == [{"items": [1]}]
        assert kv.get(["doc"]).value == {"items": [1]}

    def test_in_place_mutation_is_committed(self, kv):
        kv.set(["doc"], {"count": 1})

        def update(values, abort):
            values[0]["count"] += 1
            return values

        assert kv.update_many([["doc"]], update).ok
        assert kv.get(["doc"]).value == {"count": 2}

    def test_tuple_result_accepted(self, kv):
        response = kv.update_many([["a"], ["b"]], lambda values, abort: (1, 2))
        assert response.values == [1, 2]

    def test_raise_for_status(self, kv):
        kv.set(["A"], 10)
        kv.set(["B"], 0)

        ok = kv.update_many([["A"], ["B"]], transfer(5))
        assert ok.raise_for_status() is ok

        with pytest.raises(AbortedError) as exc_info:
            kv.update_many([["A"], ["B"]], transfer(50)).raise_for_status()
        assert exc_info.value.reason == "insufficient funds"
        assert exc_info.value.values == [5, 5]


class TestProgrammerErrors:
    """Malformed update function results raise and leave the store alone."""

    def test_none_result(self, kv):
        kv.set(["k"], 1)
        with pytest.raises(UpdateFunctionError, match="must return a value for each key"):
            kv.update_many([["k"]], lambda values, abort: None)
        assert kv.get(["k"]).value == 1

    @pytest.mark.parametrize("result", ["ab", b"ab", {"k": 1}, 42])
    def test_non_sequence_result(self, kv, result):
        with pytest.raises(UpdateFunctionError):
            kv.update_many([["a"], ["b"]], lambda values, abort: result)

    def test_wrong_result_count(self, kv):
        kv.set(["a"], 1)
        kv.set(["b"], 2)

        with pytest.raises(ResultArityError, match="result count must match key count"):
            kv.update_many([["a"], ["b"]], lambda values, abort: [1, 2, 3])

        assert [e.value for e in kv.get_many([["a"], ["b"]])] == [1, 2]

    def test_abort_inside_result_rejected(self, kv):
        kv.set(["k"], 1)

        with pytest.raises(UpdateFunctionError, match="Abort must be returned on its own"):
            kv.update_many([["k"]], lambda values, abort: [Abort("nope")])

        assert kv.get(["k"]).value == 1

    def test_arity_error_is_value_error(self, kv):
        with pytest.raises(ValueError):
            kv.update_many([["a"]], lambda values, abort: [])

    def test_update_function_exception_not_retried(self, memory_store):
        calls = []

        def failing_update(values, abort):
            calls.append(1)
            raise KeyError("Intentional error")

        kv = SafeAtomicKv(memory_store)
        with pytest.raises(KeyError, match="Intentional error"):
            kv.update_many([["k"]], failing_update)
        assert len(calls) == 1

    def test_negative_budget(self, kv):
        with pytest.raises(ValueError, match="retry_budget"):
            kv.update_many([["k"]], lambda values, abort: [1], retry_budget=-1)

    def test_backend_error_propagates(self):
        class BrokenStore(InMemoryKvStore):
            def batch_get(self, keys):
                raise ConnectionError("backend down")

        kv = SafeAtomicKv(BrokenStore())
        with pytest.raises(ConnectionError, match="backend down"):
            kv.update_many([["k"]], lambda values, abort: [1])


class TestRetries:
    """Conflicts, retries and exhaustion."""

    def test_retries_with_fresh_values(self, memory_store):
        memory_store.set(["k"], "start")
        racing = RacingStore(memory_store, ["k"], races=1)
        seen = []

        def update(values, abort):
            seen.append(values[0])
            return [f"{values[0]}+mine"]

        response = SafeAtomicKv(racing).update_many([["k"]], update)

        assert response.ok
        assert response.attempts == 2
        assert response.conflicts == 1
        assert seen == ["start", "writer-1"]
        assert memory_store.get(["k"]).value == "writer-1+mine"

    def test_exhausted_retries(self, memory_store):
        memory_store.set(["k"], "start")
        racing = RacingStore(memory_store, ["k"], races=100)

        response = SafeAtomicKv(racing).update_many(
            [["k"]], lambda values, abort: ["mine"], retry_budget=3
        )

        assert not response.ok
        assert response.error == "Failed to commit transaction"
        assert response.status == UpdateStatus.EXHAUSTED
        assert response.attempts == 4
        # Values as read on the last attempt, before the final race
        assert response.values == ["writer-3"]
        assert memory_store.get(["k"]).value == "writer-4"

    def test_zero_budget_makes_one_attempt(self, memory_store):
        racing = RacingStore(memory_store, ["k"], races=1)

        response = SafeAtomicKv(racing).update_many(
            [["k"]], lambda values, abort: ["mine"], retry_budget=0
        )

        assert response.status == UpdateStatus.EXHAUSTED
        assert racing.commits == 1
        assert response.values == [None]

    def test_default_budget_is_ten(self, memory_store):
        racing = RacingStore(memory_store, ["k"], races=100)

        response = SafeAtomicKv(racing).update_many([["k"]], lambda values, abort: ["mine"])

        assert racing.commits == 11
        with pytest.raises(TooManyRetriesError):
            response.raise_for_status()

    def test_client_default_budget(self, memory_store):
        racing = RacingStore(memory_store, ["k"], races=100)

        SafeAtomicKv(racing, retry_budget=2).update_many([["k"]], lambda values, abort: ["x"])

        assert racing.commits == 3

    def test_conflict_on_one_key_blocks_all(self, memory_store):
        memory_store.set(["a"], 1)
        memory_store.set(["b"], 2)
        racing = RacingStore(memory_store, ["b"], races=100)

        response = SafeAtomicKv(racing).update_many(
            [["a"], ["b"]], lambda values, abort: [10, 20], retry_budget=1
        )

        assert not response.ok
        assert memory_store.get(["a"]).value == 1
        assert memory_store.get(["b"]).value == "writer-2"

    def test_abort_after_conflict(self, memory_store):
        memory_store.set(["k"], "start")
        racing = RacingStore(memory_store, ["k"], races=1)

        def update(values, abort):
            if values[0] != "start":
                return Abort("value moved")
            return ["mine"]

        response = SafeAtomicKv(racing).update_many([["k"]], update)

        assert response.status == UpdateStatus.ABORTED
        assert response.error == "value moved"
        assert response.values == ["writer-1"]
        assert response.conflicts == 1

    def test_abort_state_does_not_leak_between_attempts(self, memory_store):
        racing = RacingStore(memory_store, ["k"], races=1)
        signals = []

        def update(values, abort):
            signals.append(abort)
            return ["mine"]

        assert SafeAtomicKv(racing).update_many([["k"]], update).ok
        assert len(signals) == 2
        assert signals[0] is not signals[1]

    def test_identity_update_leaves_values_unchanged(self, memory_store):
        memory_store.set(["a"], {"n": 1})
        memory_store.set(["b"], [1, 2])
        racing = RacingStore(memory_store, ["c"], races=0)

        kv = SafeAtomicKv(racing)
        for _ in range(3):
            assert kv.update_many([["a"], ["b"]], lambda values, abort: values).ok

        assert memory_store.get(["a"]).value == {"n": 1}
        assert memory_store.get(["b"]).value == [1, 2]

    def test_backoff_sleeps_between_retries(self, memory_store, monkeypatch):
        from safeatomics.occ import controller

        sleeps = []
        monkeypatch.setattr(controller.time, "sleep", sleeps.append)
        racing = RacingStore(memory_store, ["k"], races=2)

        kv = SafeAtomicKv(racing, initial_delay=0.1)
        assert kv.update_many([["k"]], lambda values, abort: ["x"]).ok

        assert len(sleeps) == 2
        assert 0.1 <= sleeps[0] <= 0.2
        assert 0.2 <= sleeps[1] <= 0.3

    def test_no_sleep_by_default(self, memory_store, monkeypatch):
        from safeatomics.occ import controller

        sleeps = []
        monkeypatch.setattr(controller.time, "sleep", sleeps.append)
        racing = RacingStore(memory_store, ["k"], races=3)

        assert SafeAtomicKv(racing).update_many([["k"]], lambda values, abort: ["x"]).ok
        assert sleeps == []


class TestConcurrentUpdaters:
    """Real threads contending through the backend."""

    def test_two_updaters_serialize(self, kv):
        kv.set(["counter"], 0)
        barrier = threading.Barrier(2, timeout=5)
        responses = []

        def updater():
            first_call = [True]

            def increment(value, abort):
                if first_call[0]:
                    first_call[0] = False
                    barrier.wait()  # Both read 0 before either commits
                return value + 1

            responses.append(kv.update_one(["counter"], increment))

        threads = [threading.Thread(target=updater) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert kv.get(["counter"]).value == 2
        assert all(r.ok for r in responses)
        assert sorted(r.conflicts for r in responses) == [0, 1]

    def test_many_workers(self, kv):
        """Test concurrent updates resolve correctly."""
        kv.set(["shared"], {"counter": 0, "updates": []})
        errors = []

        def worker(worker_id):
            def update(values, abort):
                state = values[0]
                state["counter"] += 1
                state["updates"].append(f"worker-{worker_id}")
                return [state]

            try:
                kv.update_many([["shared"]], update, retry_budget=100).raise_for_status()
            except Exception as e:
                errors.append((worker_id, str(e)))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        final = kv.get(["shared"]).value
        assert final["counter"] == 10
        assert len(final["updates"]) == 10


class TestUpdateOne:
    """update_one is update_many over a one-key batch."""

    def test_updates_value(self, kv):
        response = kv.update_one(["test", "abc"], lambda value, abort: "123")

        assert response.ok
        assert response.value == "123"
        assert kv.get(["test", "abc"]).value == "123"

    def test_abort_keeps_value(self, kv):
        kv.set(["test", "abc"], "123")

        def update(value, abort):
            abort()
            return "new value"

        response = kv.update_one(["test", "abc"], update)

        assert not response.ok
        assert response.value == "123"
        assert kv.get(["test", "abc"]).value == "123"

    def test_abort_by_return_value(self, kv):
        kv.set(["k"], 3)

        response = kv.update_one(["k"], lambda value, abort: Abort("too small"))

        assert response.error == "too small"
        assert response.value == 3

    @pytest.mark.parametrize(
        "fn",
        [
            lambda value, abort: (value or 0) + 1,
            lambda value, abort: abort("no"),
            lambda value, abort: None,
            lambda value, abort: [value, value],
        ],
    )
    def test_matches_update_many(self, fn):
        one = SafeAtomicKv(InMemoryKvStore())
        many = SafeAtomicKv(InMemoryKvStore())
        one.set(["k"], 7)
        many.set(["k"], 7)

        single = one.update_one(["k"], fn)
        batch = many.update_many([["k"]], lambda values, abort: [fn(values[0], abort)])

        assert (single.ok, single.error, single.value) == (batch.ok, batch.error, batch.values[0])
        assert one.get(["k"]).value == many.get(["k"]).value

    def test_returned_abort_differs_from_literal_wrapping(self, kv):
        kv.set(["k"], 7)
        fn = lambda value, abort: Abort("declined")

        response = kv.update_one(["k"], fn)
        assert response.status == UpdateStatus.ABORTED
        assert response.error == "declined"

        with pytest.raises(UpdateFunctionError):
            kv.update_many([["k"]], lambda values, abort: [fn(values[0], abort)])
        assert kv.get(["k"]).value == 7

    def test_exhausted(self, memory_store):
        racing = RacingStore(memory_store, ["k"], races=100)

        response = SafeAtomicKv(racing).update_one(["k"], lambda value, abort: 1, retry_budget=1)

        assert not response.ok
        assert response.error == "Failed to commit transaction"
        assert response.value == "writer-1"


class TestClient:

    def test_check_and_set(self, kv):
        kv.set(["k"], 1)
        version = kv.get(["k"]).version

        assert kv.check_and_set(["k"], version, 2)
        assert not kv.check_and_set(["k"], version, 3)
        assert kv.get(["k"]).value == 2

    def test_delete(self, kv):
        kv.set(["k"], 1)
        assert kv.delete(["k"])
        assert not kv.get(["k"]).exists

    def test_delete_missing_returns_false(self, kv):
        assert not kv.delete(["never", "set"])

        kv.set(["k"], 1)
        kv.delete(["k"])
        assert not kv.delete(["k"])

    def test_context_manager(self, store):
        with SafeAtomicKv(store) as kv:
            kv.set(["k"], 1)
        assert store.get(["k"]).value == 1

    def test_negative_default_budget(self, store):
        with pytest.raises(ValueError):
            SafeAtomicKv(store, retry_budget=-1)

"""Test doubles for simulating concurrent writers."""


class RacingTransaction:
    """Transaction that lets a competing writer sneak in right before commit."""

    def __init__(self, racing_store: "RacingStore"):
        self._racing_store = racing_store
        self._tx = racing_store.inner.atomic()

    def check(self, key, version):
        self._tx.check(key, version)
        return self

    def set(self, key, value):
        self._tx.set(key, value)
        return self

    def delete(self, key):
        self._tx.delete(key)
        return self

    def commit(self):
        self._racing_store.commits += 1
        self._racing_store.interfere()
        return self._tx.commit()


class RacingStore:
    """Wrap a store and write to `key` before each of the next `races` commits.

    The competing value for the n-th race is "writer-n".
    """

    def __init__(self, inner, key, races):
        self.inner = inner
        self.key = key
        self.races = races
        self.commits = 0
        self.interferences = 0

    def batch_get(self, keys):
        return self.inner.batch_get(keys)

    def atomic(self):
        return RacingTransaction(self)

    def interfere(self):
        if self.interferences < self.races:
            self.interferences += 1
            self.inner.set(self.key, f"writer-{self.interferences}")



#!/usr/bin/env python
"""Random transfers between accounts from many threads.

Every transfer is an update_many over two balances, so the total never
changes no matter how the threads interleave.
"""

import logging
import random
import threading

from safeatomics import InMemoryKvStore, SafeAtomicKv

ACCOUNTS = [("accounts", name) for name in ("alice", "bob", "carol", "dave")]


def transfer(amount):
    def update(values, abort):
        src, dst = values
        if src < amount:
            abort(f"insufficient funds for {amount}")
        return [src - amount, dst + amount]

    return update


def worker(kv: SafeAtomicKv, seed: int, stats: dict, lock: threading.Lock):
    rng = random.Random(seed)
    for _ in range(200):
        src, dst = rng.sample(ACCOUNTS, 2)
        response = kv.update_many([src, dst], transfer(rng.randint(1, 40)), retry_budget=50)
        with lock:
            stats["conflicts"] += response.conflicts
            stats["committed" if response.ok else "declined"] += 1


def main():
    logging.basicConfig(level=logging.WARNING)
    kv = SafeAtomicKv(InMemoryKvStore())
    for key in ACCOUNTS:
        kv.set(key, 100)

    stats = {"committed": 0, "declined": 0, "conflicts": 0}
    lock = threading.Lock()
    threads = [threading.Thread(target=worker, args=(kv, i, stats, lock)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    balances = {key[1]: entry.value for key, entry in zip(ACCOUNTS, kv.get_many(ACCOUNTS))}
    print(f"Balances: {balances}")
    print(f"Total: {sum(balances.values())} (expected {100 * len(ACCOUNTS)})")
    print(f"Stats: {stats}")


if __name__ == "__main__":
    main()

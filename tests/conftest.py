"""Shared fixtures for safeatomics tests."""

import pytest

from safeatomics import InMemoryKvStore, LocalFileKvStore, SafeAtomicKv


@pytest.fixture
def memory_store():
    """Provide a clean in-memory store for each test."""
    return InMemoryKvStore()


@pytest.fixture
def local_store(tmp_path):
    """Provide a store file in a temporary directory."""
    return LocalFileKvStore(tmp_path / "store.json")


@pytest.fixture(params=["memory", "local"])
def store(request, tmp_path):
    """Run a test against every bundled backend."""
    if request.param == "memory":
        return InMemoryKvStore()
    return LocalFileKvStore(tmp_path / "store.json")


@pytest.fixture
def kv(store):
    return SafeAtomicKv(store)

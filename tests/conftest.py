"""
conftest.py - pytest fixtures for journal_sync tests.
"""

import os
import tempfile

import pytest

from journal_sync.remote.memory import InMemoryDocumentStore
from journal_sync.store.record_store import LocalStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test databases."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db_path(temp_dir):
    return os.path.join(temp_dir, "journal.db")


@pytest.fixture
def store(db_path):
    """Create an initialized LocalStore in a temp directory."""
    store = LocalStore(db_path)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def two_stores(temp_dir):
    """Two initialized LocalStores, one per simulated device."""
    store_a = LocalStore(os.path.join(temp_dir, "device_a.db"))
    store_a.initialize()

    store_b = LocalStore(os.path.join(temp_dir, "device_b.db"))
    store_b.initialize()

    yield store_a, store_b

    store_a.close()
    store_b.close()


@pytest.fixture
def remote():
    """Empty in-memory remote document store."""
    return InMemoryDocumentStore()

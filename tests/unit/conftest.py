"""
Unit test configuration for tests/unit/.

Store fixtures are parametrized over both adapters so the same behavioral
tests run against the in-memory test double and an in-process DuckDB.
"""

import pytest

from notably.storage.duckdb_store import DuckDBAdapter
from notably.storage.memory import InMemoryAdapter
from notably.store import FactStore


@pytest.fixture
def memory_adapter():
    adapter = InMemoryAdapter()
    adapter.create_table()
    return adapter


@pytest.fixture
def duckdb_adapter():
    adapter = DuckDBAdapter(
        database=":memory:", pool_size=4, max_retries=3, retry_initial_delay=0.01
    )
    adapter.create_table()
    yield adapter
    adapter.close()


@pytest.fixture(params=["memory", "duckdb"])
def adapter(request):
    """Provisioned adapter of each implementation."""
    if request.param == "memory":
        return request.getfixturevalue("memory_adapter")
    return request.getfixturevalue("duckdb_adapter")


@pytest.fixture
def store(adapter, clock):
    """FactStore over a provisioned adapter, with a small page size."""
    return FactStore(adapter, clock=clock, page_size=3)


@pytest.fixture
def memory_store(memory_adapter, clock):
    return FactStore(memory_adapter, clock=clock, page_size=3)

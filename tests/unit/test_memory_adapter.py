"""Unit tests for the in-memory adapter's isolation and test hooks."""

import pytest

from notably.common.errors import NotInitializedError
from notably.models import UNBOUNDED, FieldKey
from notably.storage.memory import InMemoryAdapter


class TestInMemoryAdapter:
    def test_requires_table(self, make_fact):
        adapter = InMemoryAdapter()
        with pytest.raises(NotInitializedError):
            adapter.put_item(make_fact())

    def test_instances_are_isolated(self, make_fact):
        first = InMemoryAdapter(initialized=True)
        second = InMemoryAdapter(initialized=True)

        first.put_item(make_fact())

        assert len(first) == 1
        assert len(second) == 0

    def test_page_size_caps_requested_limit(self, make_fact):
        adapter = InMemoryAdapter(page_size=2, initialized=True)
        for i in range(5):
            adapter.put_item(make_fact(id=f"f{i}"))

        page = adapter.query_range(FieldKey("ns", "x"), UNBOUNDED, 100)
        assert len(page.items) == 2
        assert page.last_evaluated is not None

    def test_simulated_failure_until_cleared(self, make_fact):
        adapter = InMemoryAdapter(initialized=True)
        adapter.simulate_failure("put_item", ConnectionError("network down"))

        with pytest.raises(ConnectionError):
            adapter.put_item(make_fact())
        assert len(adapter) == 0

        adapter.clear_failures()
        adapter.put_item(make_fact())
        assert len(adapter) == 1

    def test_call_count(self, make_fact):
        adapter = InMemoryAdapter(initialized=True)
        adapter.put_item(make_fact())
        adapter.list_all(UNBOUNDED, 10)
        adapter.list_all(UNBOUNDED, 10)

        assert adapter.call_count("put_item") == 1
        assert adapter.call_count("list_all") == 2
        assert adapter.call_count("query_range") == 0

    def test_reads_return_copies(self, make_fact):
        adapter = InMemoryAdapter(initialized=True)
        adapter.put_item(make_fact(value={"tags": ["a"]}))

        first = adapter.list_all(UNBOUNDED, 1).items[0].fact
        first.value["tags"].append("mutated")

        second = adapter.list_all(UNBOUNDED, 1).items[0].fact
        assert second.value == {"tags": ["a"]}

    def test_rejects_non_positive_limit(self):
        adapter = InMemoryAdapter(initialized=True)
        with pytest.raises(ValueError):
            adapter.list_all(UNBOUNDED, 0)

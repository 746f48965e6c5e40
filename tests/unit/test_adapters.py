"""Contract tests run against every BackingStoreAdapter implementation."""

from datetime import timedelta

import pytest

from notably.models import (
    UNBOUNDED,
    FieldKey,
    IdKey,
    NamespaceKey,
    SortKey,
    TimeRange,
    to_epoch_us,
)


@pytest.fixture
def seeded(adapter, make_fact, t0):
    """Five versions across two namespaces, written out of time order."""
    facts = [
        make_fact(id="a", namespace="ns", field_name="x", timestamp=t0 + timedelta(minutes=2)),
        make_fact(id="b", namespace="ns", field_name="x", timestamp=t0),
        make_fact(id="c", namespace="ns", field_name="y", timestamp=t0 + timedelta(minutes=1)),
        make_fact(id="d", namespace="other", field_name="x", timestamp=t0 + timedelta(minutes=3)),
        make_fact(id="a", namespace="ns", field_name="x", timestamp=t0 + timedelta(minutes=4)),
    ]
    items = [adapter.put_item(fact) for fact in facts]
    return adapter, items


def _drain(read, limit):
    """Follow last_evaluated until the adapter reports the end."""
    items, after = [], None
    while True:
        page = read(limit, after)
        items.extend(page.items)
        if page.last_evaluated is None:
            return items
        after = page.last_evaluated


class TestProvisioning:
    def test_create_table_is_idempotent(self, adapter):
        adapter.create_table()
        adapter.create_table()
        assert adapter.is_initialized()

    def test_drop_table_removes_storage(self, adapter, make_fact):
        adapter.put_item(make_fact())
        adapter.drop_table()
        assert not adapter.is_initialized()

        adapter.create_table()
        page = adapter.list_all(UNBOUNDED, 10)
        assert page.items == []


class TestPutItem:
    def test_put_assigns_increasing_sequences(self, adapter, make_fact):
        first = adapter.put_item(make_fact())
        second = adapter.put_item(make_fact())
        assert second.sequence > first.sequence

    def test_identical_writes_stay_distinct_versions(self, adapter, make_fact):
        adapter.put_item(make_fact())
        adapter.put_item(make_fact())

        page = adapter.query_range(FieldKey("ns", "x"), UNBOUNDED, 10)
        assert len(page.items) == 2
        assert page.items[0].sort_key < page.items[1].sort_key

    def test_fact_read_back_equal(self, adapter, make_fact):
        fact = make_fact(
            value={"name": "Ada", "scores": [1, 2.5, None], "ok": True},
            data_type="json",
            columns=[("name", "string")],
        )
        adapter.put_item(fact)

        page = adapter.query_range(IdKey("fact-1"), UNBOUNDED, 1)
        assert page.items[0].fact == fact


class TestRangeReads:
    """Partition filtering, ordering and keyset resumption."""

    def test_field_partition_ordered_ascending(self, seeded):
        adapter, _ = seeded
        page = adapter.query_range(FieldKey("ns", "x"), UNBOUNDED, 10)

        assert [i.fact.id for i in page.items] == ["b", "a", "a"]
        assert page.last_evaluated is None

    def test_field_partition_descending(self, seeded):
        adapter, _ = seeded
        page = adapter.query_range(FieldKey("ns", "x"), UNBOUNDED, 10, ascending=False)
        keys = [i.sort_key for i in page.items]
        assert keys == sorted(keys, reverse=True)

    def test_namespace_partition(self, seeded):
        adapter, _ = seeded
        page = adapter.query_range(NamespaceKey("ns"), UNBOUNDED, 10)
        assert {(i.fact.namespace) for i in page.items} == {"ns"}
        assert len(page.items) == 4

    def test_id_partition_spans_namespaces(self, seeded, make_fact, t0):
        adapter, _ = seeded
        adapter.put_item(make_fact(id="a", namespace="elsewhere", timestamp=t0))

        page = adapter.query_range(IdKey("a"), UNBOUNDED, 10)
        assert {i.fact.namespace for i in page.items} == {"ns", "elsewhere"}

    def test_time_window_inclusive(self, seeded, t0):
        adapter, _ = seeded
        window = TimeRange(to_epoch_us(t0), to_epoch_us(t0 + timedelta(minutes=2)))

        page = adapter.list_all(window, 10)
        assert [i.fact.id for i in page.items] == ["b", "c", "a"]

    def test_limit_sets_resume_position(self, seeded):
        adapter, _ = seeded
        page = adapter.list_all(UNBOUNDED, 2)

        assert len(page.items) == 2
        assert page.last_evaluated == page.items[-1].sort_key

    def test_exact_fit_has_no_resume_position(self, seeded):
        adapter, _ = seeded
        page = adapter.list_all(UNBOUNDED, 5)
        assert len(page.items) == 5
        assert page.last_evaluated is None

    @pytest.mark.parametrize("ascending", [True, False])
    def test_paging_covers_everything_once(self, seeded, ascending):
        adapter, items = seeded

        drained = _drain(
            lambda limit, after: adapter.list_all(UNBOUNDED, limit, after=after, ascending=ascending),
            limit=2,
        )

        expected = sorted((i.sort_key for i in items), reverse=not ascending)
        assert [i.sort_key for i in drained] == expected

    def test_after_is_exclusive(self, seeded):
        adapter, _ = seeded
        everything = adapter.list_all(UNBOUNDED, 10).items

        page = adapter.list_all(UNBOUNDED, 10, after=everything[1].sort_key)
        assert [i.sort_key for i in page.items] == [i.sort_key for i in everything[2:]]

    def test_after_position_need_not_exist(self, seeded, t0):
        adapter, _ = seeded
        position = SortKey(to_epoch_us(t0 + timedelta(seconds=90)), "", 0)

        page = adapter.list_all(UNBOUNDED, 10, after=position)
        assert [i.fact.id for i in page.items] == ["a", "d", "a"]

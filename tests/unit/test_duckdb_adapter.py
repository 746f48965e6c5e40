"""Unit tests for the DuckDB adapter: persistence, errors and transport retries."""

import time
from contextlib import contextmanager
from unittest.mock import patch

import duckdb
import pytest

from notably.common.cancellation import CancellationToken, cancellation_scope
from notably.common.config import StoreConfig
from notably.common.errors import CanceledError, NotInitializedError
from notably.models import UNBOUNDED, FieldKey, IdKey
from notably.storage.duckdb_store import DuckDBAdapter, retry_with_exponential_backoff
from notably.store import FactStore, create_adapter


class TestDuckDBAdapter:
    def test_missing_table_raises_not_initialized(self, make_fact):
        with DuckDBAdapter(database=":memory:", max_retries=0) as adapter:
            assert not adapter.is_initialized()

            with pytest.raises(NotInitializedError):
                adapter.put_item(make_fact())
            with pytest.raises(NotInitializedError):
                adapter.query_range(FieldKey("ns", "x"), UNBOUNDED, 10)

    def test_custom_table_name(self, make_fact):
        with DuckDBAdapter(database=":memory:", table_name="facts_v2") as adapter:
            adapter.create_table()
            adapter.put_item(make_fact())

            with adapter.pool.acquire() as conn:
                count = conn.execute("SELECT count(*) FROM facts_v2").fetchone()[0]
            assert count == 1

    @pytest.mark.integration
    def test_facts_persist_across_adapters(self, tmp_path, make_fact):
        database = str(tmp_path / "facts.duckdb")
        fact = make_fact(value={"persisted": True})

        with DuckDBAdapter(database=database) as adapter:
            adapter.create_table()
            first = adapter.put_item(fact)

        with DuckDBAdapter(database=database) as adapter:
            assert adapter.is_initialized()
            page = adapter.query_range(IdKey("fact-1"), UNBOUNDED, 10)
            second = adapter.put_item(fact)

        assert page.items[0].fact == fact
        assert second.sequence > first.sequence

    def test_max_page_size_caps_limit(self, make_fact):
        with DuckDBAdapter(database=":memory:", max_page_size=2) as adapter:
            adapter.create_table()
            for i in range(4):
                adapter.put_item(make_fact(id=f"f{i}"))

            page = adapter.list_all(UNBOUNDED, 100)
            assert len(page.items) == 2
            assert page.last_evaluated == page.items[-1].sort_key

    def test_shared_pool_not_closed_by_adapter(self):
        with DuckDBAdapter(database=":memory:") as owner:
            borrower = DuckDBAdapter(table_name="other", pool=owner.pool)
            borrower.close()

            with owner.pool.acquire() as conn:
                assert conn.execute("SELECT 1").fetchone() == (1,)

    def test_memory_limit_from_config(self):
        adapter = create_adapter(
            StoreConfig(backend="duckdb", database=":memory:", memory_limit="256MB")
        )
        with adapter:
            with adapter.pool.acquire() as conn:
                limit = conn.execute("SELECT current_setting('memory_limit')").fetchone()[0]
        assert "256" in limit or "244" in limit


class TestCancellationAwareConnections:
    """Pool waits honor the deadline of the store operation that issued them."""

    def test_pool_wait_bounded_by_deadline(self, make_fact):
        with DuckDBAdapter(
            database=":memory:",
            pool_size=1,
            acquire_timeout=30.0,
            max_retries=2,
            retry_initial_delay=0.01,
        ) as adapter:
            adapter.create_table()
            store = FactStore(adapter)
            token = CancellationToken.with_timeout(0.2)

            started = time.monotonic()
            with adapter.pool.acquire():
                with pytest.raises(CanceledError) as exc_info:
                    store.put_fact(make_fact(), cancel=token)

            assert time.monotonic() - started < 5
            assert exc_info.value.operation == "put_fact"
            assert adapter.query_range(IdKey("fact-1"), UNBOUNDED, 10).items == []

    def test_cancelled_while_queued_never_writes(self, duckdb_adapter, make_fact):
        token = CancellationToken()
        real_acquire = duckdb_adapter.pool.acquire

        @contextmanager
        def acquire_then_cancel(timeout):
            with real_acquire(timeout=timeout) as conn:
                token.cancel("caller gave up while queued")
                yield conn

        with patch.object(duckdb_adapter.pool, "acquire", acquire_then_cancel):
            with cancellation_scope(token):
                with pytest.raises(CanceledError, match="gave up while queued"):
                    duckdb_adapter.put_item(make_fact())

        assert duckdb_adapter.query_range(IdKey("fact-1"), UNBOUNDED, 10).items == []

    def test_no_token_uses_configured_timeout(self, duckdb_adapter, make_fact):
        with patch.object(
            duckdb_adapter.pool, "acquire", wraps=duckdb_adapter.pool.acquire
        ) as acquire:
            duckdb_adapter.put_item(make_fact())

        acquire.assert_called_once_with(timeout=duckdb_adapter.acquire_timeout)


class _Flaky:
    """Minimal object carrying a retry policy for the decorator."""

    max_retries = 2
    retry_initial_delay = 0.0
    retry_max_delay = 0.0

    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    @retry_with_exponential_backoff((duckdb.IOException, TimeoutError))
    def read(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class TestRetryWithExponentialBackoff:
    """Transport-level retry policy."""

    def test_retries_transient_errors_then_succeeds(self):
        flaky = _Flaky([duckdb.IOException("disk busy"), TimeoutError("pool")])
        assert flaky.read() == "ok"
        assert flaky.calls == 3

    def test_gives_up_after_max_retries(self):
        flaky = _Flaky([duckdb.IOException("a"), duckdb.IOException("b"), duckdb.IOException("c")])
        with pytest.raises(duckdb.IOException):
            flaky.read()
        assert flaky.calls == 3

    def test_non_retryable_errors_raise_immediately(self):
        flaky = _Flaky([ValueError("bad input")])
        with pytest.raises(ValueError):
            flaky.read()
        assert flaky.calls == 1

    def test_delay_doubles_up_to_max(self):
        flaky = _Flaky([duckdb.IOException("a")] * 3)
        flaky.max_retries = 3
        flaky.retry_initial_delay = 0.1
        flaky.retry_max_delay = 0.25

        with patch("notably.storage.duckdb_store.time.sleep") as mock_sleep:
            assert flaky.read() == "ok"

        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.1, 0.2, 0.25]

"""DuckDB backing store adapter.

Persists one row per Fact version in a single table and serves keyset-paginated
range reads over the field, namespace and id partitions through secondary
indexes. Each version is a single INSERT, so a reader never sees a partial Fact.

Row layout (see notably.storage.codec):

    sequence      BIGINT  primary key, from a DuckDB sequence (tie-break)
    timestamp_us  BIGINT  canonical UTC microseconds
    fact_id       VARCHAR
    namespace     VARCHAR
    field_name    VARCHAR
    data_type     VARCHAR
    value_json    VARCHAR
    is_deleted    BOOLEAN
    columns_json  VARCHAR

Transient transport failures are retried here with exponential backoff. Writes
are only retried on errors raised before the row is committed (transaction
conflicts and pool timeouts), so a retried put never appends twice.

Usage:
    adapter = DuckDBAdapter(database="facts.duckdb")
    adapter.create_table()
    store = FactStore(adapter)
"""

import functools
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

import duckdb

from notably.common.cancellation import bounded_timeout, check_cancelled, current_cancellation
from notably.common.config import config
from notably.common.connection_pool import DuckDBConnectionPool
from notably.common.errors import NotInitializedError
from notably.common.logging import get_logger
from notably.common.metrics import create_component_metrics
from notably.models import Fact, FieldKey, IdKey, NamespaceKey, PartitionKey, SortKey, TimeRange
from notably.storage.adapter import Page, StoredItem
from notably.storage.codec import ROW_FIELDS, decode_tuple, encode_row

logger = get_logger(__name__, component="storage")
metrics = create_component_metrics("storage")

READ_RETRYABLE = (duckdb.IOException, duckdb.TransactionException, TimeoutError)
WRITE_RETRYABLE = (duckdb.TransactionException, TimeoutError)


def retry_with_exponential_backoff(retryable: tuple[type[BaseException], ...]):
    """Decorator for adapter methods, retrying ``retryable`` errors.

    Reads ``max_retries``, ``retry_initial_delay`` and ``retry_max_delay``
    from the adapter instance so each adapter can carry its own policy.

    Example:
        @retry_with_exponential_backoff(READ_RETRYABLE)
        def list_all(self, ...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            delay = self.retry_initial_delay
            attempt = 0

            while True:
                try:
                    return func(self, *args, **kwargs)
                except retryable as e:
                    if attempt >= self.max_retries:
                        logger.error(
                            f"All {self.max_retries} retry attempts failed",
                            function=func.__name__,
                            error=str(e),
                        )
                        raise

                    attempt += 1
                    logger.warning(
                        f"Attempt {attempt}/{self.max_retries} failed, retrying",
                        function=func.__name__,
                        error=str(e),
                        delay_seconds=delay,
                    )
                    metrics.increment("adapter_retries_total", labels={"function": func.__name__})
                    time.sleep(delay)
                    delay = min(delay * 2, self.retry_max_delay)

        return wrapper

    return decorator


def _keyset_condition(after: SortKey, ascending: bool) -> tuple[str, list[Any]]:
    """Strictly-after (or before, descending) condition on the sort key."""
    op = ">" if ascending else "<"
    clause = (
        f"(timestamp_us {op} ? OR (timestamp_us = ? AND "
        f"(fact_id {op} ? OR (fact_id = ? AND sequence {op} ?))))"
    )
    params = [
        after.timestamp_us,
        after.timestamp_us,
        after.fact_id,
        after.fact_id,
        after.sequence,
    ]
    return clause, params


def _partition_condition(partition: PartitionKey) -> tuple[str, list[Any]]:
    if isinstance(partition, FieldKey):
        return "namespace = ? AND field_name = ?", [partition.namespace, partition.field_name]
    if isinstance(partition, NamespaceKey):
        return "namespace = ?", [partition.namespace]
    if isinstance(partition, IdKey):
        return "fact_id = ?", [partition.fact_id]
    raise TypeError(f"Unsupported partition key: {partition!r}")


class DuckDBAdapter:
    """Durable BackingStoreAdapter on DuckDB with pooled cursors.

    Args:
        database: DuckDB database path (defaults to config)
        table_name: Table name (defaults to config)
        pool_size: Pooled cursor count (defaults to config)
        max_page_size: Cap on rows per range read (defaults to config)
        memory_limit: DuckDB memory limit for a pool the adapter creates
            (defaults to config)
        pool: Existing pool to share (the adapter will not close it)
    """

    def __init__(
        self,
        database: str | None = None,
        table_name: str | None = None,
        pool_size: int | None = None,
        max_page_size: int | None = None,
        acquire_timeout: float | None = None,
        max_retries: int | None = None,
        retry_initial_delay: float | None = None,
        retry_max_delay: float | None = None,
        memory_limit: str | None = None,
        pool: DuckDBConnectionPool | None = None,
    ):
        store_config = config.store
        self.database = database or store_config.database
        self.table_name = table_name or store_config.table_name
        self.max_page_size = max_page_size or store_config.adapter_page_size
        self.acquire_timeout = acquire_timeout or store_config.acquire_timeout_seconds
        self.max_retries = store_config.max_retries if max_retries is None else max_retries
        self.retry_initial_delay = (
            store_config.retry_initial_delay if retry_initial_delay is None else retry_initial_delay
        )
        self.retry_max_delay = (
            store_config.retry_max_delay if retry_max_delay is None else retry_max_delay
        )

        self._owns_pool = pool is None
        self.pool = pool or DuckDBConnectionPool(
            database=self.database,
            pool_size=pool_size or store_config.pool_size,
            memory_limit=memory_limit or store_config.memory_limit,
        )
        self._sequence_name = f"{self.table_name}_seq"
        self._columns = ", ".join(ROW_FIELDS)

        logger.info(
            "DuckDB adapter initialized",
            database=self.database,
            table=self.table_name,
            max_page_size=self.max_page_size,
        )

    @contextmanager
    def _connection(self, operation: str):
        """Pooled connection for one item operation.

        The wait is capped by the deadline of the calling store operation,
        and the token is checked again once a connection is held so an
        operation cancelled while queued never reaches DuckDB.
        """
        cancel = current_cancellation()
        check_cancelled(cancel, operation)
        timeout = bounded_timeout(self.acquire_timeout, cancel)

        with self.pool.acquire(timeout=timeout) as conn:
            check_cancelled(cancel, operation)
            yield conn

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def create_table(self) -> None:
        """Create the facts table, its sequence and indexes (idempotent)."""
        t = self.table_name
        statements = [
            f"CREATE SEQUENCE IF NOT EXISTS {self._sequence_name} START 1",
            f"""
            CREATE TABLE IF NOT EXISTS {t} (
                sequence BIGINT PRIMARY KEY,
                timestamp_us BIGINT NOT NULL,
                fact_id VARCHAR NOT NULL,
                namespace VARCHAR NOT NULL,
                field_name VARCHAR NOT NULL,
                data_type VARCHAR NOT NULL,
                value_json VARCHAR,
                is_deleted BOOLEAN NOT NULL,
                columns_json VARCHAR
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {t}_field_idx ON {t} (namespace, field_name, timestamp_us)",
            f"CREATE INDEX IF NOT EXISTS {t}_namespace_idx ON {t} (namespace, timestamp_us)",
            f"CREATE INDEX IF NOT EXISTS {t}_id_idx ON {t} (fact_id, timestamp_us)",
            f"CREATE INDEX IF NOT EXISTS {t}_time_idx ON {t} (timestamp_us)",
        ]
        with self.pool.acquire(timeout=self.acquire_timeout) as conn:
            for statement in statements:
                conn.execute(statement)

        logger.info("Facts table ready", table=t)

    def drop_table(self) -> None:
        with self.pool.acquire(timeout=self.acquire_timeout) as conn:
            conn.execute(f"DROP TABLE IF EXISTS {self.table_name}")
            conn.execute(f"DROP SEQUENCE IF EXISTS {self._sequence_name}")

        logger.info("Facts table dropped", table=self.table_name)

    def is_initialized(self) -> bool:
        with self.pool.acquire(timeout=self.acquire_timeout) as conn:
            row = conn.execute(
                "SELECT count(*) FROM information_schema.tables WHERE table_name = ?",
                [self.table_name],
            ).fetchone()
        return bool(row and row[0])

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    @retry_with_exponential_backoff(WRITE_RETRYABLE)
    def put_item(self, fact: Fact) -> StoredItem:
        row = encode_row(fact, sequence=0)
        values = [row[name] for name in ROW_FIELDS[1:]]
        placeholders = ", ".join("?" for _ in values)

        query = (
            f"INSERT INTO {self.table_name} ({self._columns}) "
            f"VALUES (nextval('{self._sequence_name}'), {placeholders}) "
            f"RETURNING sequence"
        )

        with self._connection("put_item") as conn:
            try:
                result = conn.execute(query, values).fetchone()
            except duckdb.CatalogException as e:
                raise NotInitializedError(
                    f"table {self.table_name} does not exist", "put_item"
                ) from e

        return StoredItem(fact=fact, sequence=int(result[0]))

    @retry_with_exponential_backoff(READ_RETRYABLE)
    def query_range(
        self,
        partition: PartitionKey,
        sort_range: TimeRange,
        limit: int,
        after: Optional[SortKey] = None,
        ascending: bool = True,
    ) -> Page:
        condition, params = _partition_condition(partition)
        return self._read([condition], params, sort_range, limit, after, ascending, "query_range")

    @retry_with_exponential_backoff(READ_RETRYABLE)
    def list_all(
        self,
        time_range: TimeRange,
        limit: int,
        after: Optional[SortKey] = None,
        ascending: bool = True,
    ) -> Page:
        return self._read([], [], time_range, limit, after, ascending, "list_all")

    def _read(
        self,
        conditions: list[str],
        params: list[Any],
        time_range: TimeRange,
        limit: int,
        after: Optional[SortKey],
        ascending: bool,
        operation: str,
    ) -> Page:
        if limit < 1:
            raise ValueError("limit must be positive")
        limit = min(limit, self.max_page_size)

        conditions = list(conditions)
        params = list(params)

        if time_range.start_us is not None:
            conditions.append("timestamp_us >= ?")
            params.append(time_range.start_us)
        if time_range.end_us is not None:
            conditions.append("timestamp_us <= ?")
            params.append(time_range.end_us)
        if after is not None:
            clause, keyset_params = _keyset_condition(after, ascending)
            conditions.append(clause)
            params.extend(keyset_params)

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        direction = "ASC" if ascending else "DESC"
        query = f"""
            SELECT {self._columns}
            FROM {self.table_name}
            {where_clause}
            ORDER BY timestamp_us {direction}, fact_id {direction}, sequence {direction}
            LIMIT ?
        """
        params.append(limit + 1)

        with self._connection(operation) as conn:
            try:
                rows = conn.execute(query, params).fetchall()
            except duckdb.CatalogException as e:
                raise NotInitializedError(
                    f"table {self.table_name} does not exist", operation
                ) from e

        items = [decode_tuple(row) for row in rows[:limit]]
        last_evaluated = items[-1].sort_key if len(rows) > limit else None

        logger.debug(
            "Range read completed",
            operation=operation,
            rows=len(items),
            has_more=last_evaluated is not None,
        )
        return Page(items=items, last_evaluated=last_evaluated)

    def close(self) -> None:
        if self._owns_pool:
            self.pool.close_all()
        logger.debug("DuckDB adapter closed", table=self.table_name)

    def __enter__(self) -> "DuckDBAdapter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

"""In-memory backing store adapter.

Used as a test double and for ephemeral stores. Every instance owns its own
rows, so independent stores can coexist in one process. Rows are kept in
their encoded form, which gives readers isolated copies and the same JSON
semantics as the durable adapter.

Besides the adapter protocol it supports failure injection and call
accounting for tests:

    adapter = InMemoryAdapter()
    adapter.create_table()
    adapter.simulate_failure("put_item", ConnectionError("network down"))
    adapter.call_count("put_item")
"""

import itertools
import threading
from collections import Counter
from typing import Any, Optional

from notably.common.errors import NotInitializedError
from notably.common.logging import get_logger
from notably.models import Fact, FieldKey, IdKey, NamespaceKey, PartitionKey, SortKey, TimeRange
from notably.storage.adapter import Page, StoredItem
from notably.storage.codec import decode_row, encode_row

logger = get_logger(__name__, component="storage")


def _matches(row: dict[str, Any], partition: Optional[PartitionKey]) -> bool:
    if partition is None:
        return True
    if isinstance(partition, FieldKey):
        return row["namespace"] == partition.namespace and row["field_name"] == partition.field_name
    if isinstance(partition, NamespaceKey):
        return row["namespace"] == partition.namespace
    if isinstance(partition, IdKey):
        return row["fact_id"] == partition.fact_id
    raise TypeError(f"Unsupported partition key: {partition!r}")


def _row_sort_key(row: dict[str, Any]) -> SortKey:
    return SortKey(row["timestamp_us"], row["fact_id"], row["sequence"])


class InMemoryAdapter:
    """Thread-safe in-memory implementation of BackingStoreAdapter.

    Args:
        page_size: Upper bound on items per page regardless of the requested
            limit, to exercise multi-page reads the way a remote store would
        initialized: Start with the table already provisioned
    """

    def __init__(self, page_size: Optional[int] = None, initialized: bool = False):
        self.page_size = page_size
        self._rows: list[dict[str, Any]] = []
        self._sequence = itertools.count(1)
        self._initialized = initialized
        self._lock = threading.RLock()
        self._failures: dict[str, BaseException] = {}
        self._calls: Counter = Counter()

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def simulate_failure(self, operation: str, error: BaseException) -> None:
        """Make ``operation`` raise ``error`` until cleared."""
        with self._lock:
            self._failures[operation] = error

    def clear_failures(self) -> None:
        with self._lock:
            self._failures.clear()

    def call_count(self, operation: str) -> int:
        with self._lock:
            return self._calls[operation]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def _enter(self, operation: str, require_table: bool = True) -> None:
        self._calls[operation] += 1
        if operation in self._failures:
            raise self._failures[operation]
        if require_table and not self._initialized:
            raise NotInitializedError("table not created", operation)

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def create_table(self) -> None:
        with self._lock:
            self._enter("create_table", require_table=False)
            self._initialized = True

    def drop_table(self) -> None:
        with self._lock:
            self._enter("drop_table", require_table=False)
            self._initialized = False
            self._rows = []

    def is_initialized(self) -> bool:
        with self._lock:
            return self._initialized

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def put_item(self, fact: Fact) -> StoredItem:
        with self._lock:
            self._enter("put_item")
            row = encode_row(fact, next(self._sequence))
            self._rows.append(row)
            return decode_row(row)

    def query_range(
        self,
        partition: PartitionKey,
        sort_range: TimeRange,
        limit: int,
        after: Optional[SortKey] = None,
        ascending: bool = True,
    ) -> Page:
        with self._lock:
            self._enter("query_range")
            return self._read(partition, sort_range, limit, after, ascending)

    def list_all(
        self,
        time_range: TimeRange,
        limit: int,
        after: Optional[SortKey] = None,
        ascending: bool = True,
    ) -> Page:
        with self._lock:
            self._enter("list_all")
            return self._read(None, time_range, limit, after, ascending)

    def _read(
        self,
        partition: Optional[PartitionKey],
        time_range: TimeRange,
        limit: int,
        after: Optional[SortKey],
        ascending: bool,
    ) -> Page:
        if limit < 1:
            raise ValueError("limit must be positive")
        if self.page_size is not None:
            limit = min(limit, self.page_size)

        candidates = [
            row
            for row in self._rows
            if _matches(row, partition) and time_range.contains(row["timestamp_us"])
        ]
        candidates.sort(key=_row_sort_key, reverse=not ascending)

        if after is not None:
            if ascending:
                candidates = [row for row in candidates if _row_sort_key(row) > after]
            else:
                candidates = [row for row in candidates if _row_sort_key(row) < after]

        selected = candidates[:limit]
        items = [decode_row(row) for row in selected]
        last_evaluated = items[-1].sort_key if len(candidates) > limit else None
        return Page(items=items, last_evaluated=last_evaluated)

    def close(self) -> None:
        logger.debug("In-memory adapter closed", rows=len(self._rows))

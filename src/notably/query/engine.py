"""Query Engine: time-window filtering, ordering and pagination.

Produces a correctly ordered, correctly bounded, resumable slice of facts
for every list-style store operation:

1. Candidates come from one adapter partition (a field or a namespace) or
   from the global time-ordered listing.
2. The inclusive ``[start_time, end_time]`` window is pushed down to the
   adapter and re-checked on every item.
3. Items arrive in SortKey order (timestamp, fact id, insertion sequence),
   ascending or descending.
4. With a limit, the engine reads ``limit + 1`` items across as many adapter
   pages as needed. If more remain, the page is truncated and a continuation
   token for the last returned item is emitted; otherwise the token is None.
5. A token resumes strictly after its position (keyset pagination), so pages
   never overlap or skip, even while newer facts are being written.

Adapter failures propagate unchanged; the engine never retries.

Usage:
    engine = QueryEngine(adapter)

    result = engine.execute(
        QueryScope.for_field("tenant-1#users", "row-42"),
        QueryOptions(sort_ascending=True, limit=50),
    )
"""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from notably.common.cancellation import CancellationToken, check_cancelled
from notably.common.errors import ValidationError
from notably.common.logging import get_logger
from notably.common.metrics import create_component_metrics
from notably.models import (
    FieldKey,
    IdKey,
    NamespaceKey,
    PartitionKey,
    QueryOptions,
    QueryResult,
    SortKey,
    TimeRange,
)
from notably.query.pagination import decode_token, encode_token, scope_fingerprint
from notably.storage.adapter import BackingStoreAdapter, StoredItem

logger = get_logger(__name__, component="query")
metrics = create_component_metrics("query")

DEFAULT_PAGE_SIZE = 500


class ScopeKind(str, Enum):
    """Which candidate set a query reads."""

    FIELD = "field"
    NAMESPACE = "namespace"
    ID = "id"
    ALL = "all"


@dataclass(frozen=True)
class QueryScope:
    """Candidate set of a query: one partition, or every fact."""

    kind: ScopeKind
    partition: Optional[PartitionKey] = None

    @classmethod
    def for_field(cls, namespace: str, field_name: str) -> "QueryScope":
        return cls(ScopeKind.FIELD, FieldKey(namespace, field_name))

    @classmethod
    def for_namespace(cls, namespace: str) -> "QueryScope":
        return cls(ScopeKind.NAMESPACE, NamespaceKey(namespace))

    @classmethod
    def for_id(cls, fact_id: str) -> "QueryScope":
        return cls(ScopeKind.ID, IdKey(fact_id))

    @classmethod
    def everything(cls) -> "QueryScope":
        return cls(ScopeKind.ALL)

    def describe(self) -> list:
        if isinstance(self.partition, FieldKey):
            return [self.kind.value, self.partition.namespace, self.partition.field_name]
        if isinstance(self.partition, NamespaceKey):
            return [self.kind.value, self.partition.namespace]
        if isinstance(self.partition, IdKey):
            return [self.kind.value, self.partition.fact_id]
        return [self.kind.value]


def validate_options(options: QueryOptions) -> None:
    """Reject malformed QueryOptions with ValidationError."""
    if options.limit is not None:
        if isinstance(options.limit, bool) or not isinstance(options.limit, int):
            raise ValidationError("limit must be an integer")
        if options.limit < 1:
            raise ValidationError("limit must be positive")

    for name in ("start_time", "end_time"):
        bound = getattr(options, name)
        if bound is not None and not isinstance(bound, datetime):
            raise ValidationError(f"{name} must be a datetime")
    if not isinstance(options.sort_ascending, bool):
        raise ValidationError("sort_ascending must be a bool")

    time_range = options.time_range
    if time_range.is_empty:
        raise ValidationError("start_time must not be after end_time")


class QueryEngine:
    """Stateless query executor over a BackingStoreAdapter.

    Safe to share across threads: all per-query state lives on the stack.

    Args:
        adapter: Backing store adapter to read from
        page_size: Items requested per adapter read when the query has no
            tighter limit
    """

    def __init__(self, adapter: BackingStoreAdapter, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.adapter = adapter
        self.page_size = page_size

    def fingerprint(self, scope: QueryScope, options: QueryOptions) -> str:
        time_range = options.time_range
        return scope_fingerprint(
            *scope.describe(),
            time_range.start_us,
            time_range.end_us,
            bool(options.sort_ascending),
        )

    def execute(
        self,
        scope: QueryScope,
        options: Optional[QueryOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> QueryResult:
        """Run one page of a query.

        Raises:
            ValidationError: If options are malformed
            InvalidPaginationTokenError: If the continuation token is invalid
            CanceledError: If ``cancel`` fires between adapter reads
        """
        options = options or QueryOptions()
        validate_options(options)

        fingerprint = self.fingerprint(scope, options)
        after: Optional[SortKey] = None
        if options.continuation_token is not None:
            after = decode_token(options.continuation_token, fingerprint)

        limit = options.limit
        wanted = limit + 1 if limit is not None else None

        collected: list[StoredItem] = []
        for item in self.scan(
            scope,
            options.time_range,
            ascending=options.sort_ascending,
            after=after,
            cancel=cancel,
            wanted=wanted,
        ):
            collected.append(item)
            if wanted is not None and len(collected) >= wanted:
                break

        token = None
        if limit is not None and len(collected) > limit:
            collected = collected[:limit]
            token = encode_token(collected[-1].sort_key, fingerprint)

        facts = [item.fact for item in collected]
        metrics.histogram("query_facts_returned", len(facts), labels={"scope": scope.kind.value})

        logger.debug(
            "Query page produced",
            scope=scope.kind.value,
            facts=len(facts),
            has_more=token is not None,
            resumed=after is not None,
        )
        return QueryResult(facts=facts, continuation_token=token)

    def scan(
        self,
        scope: QueryScope,
        time_range: TimeRange,
        ascending: bool = True,
        after: Optional[SortKey] = None,
        cancel: Optional[CancellationToken] = None,
        wanted: Optional[int] = None,
    ) -> Iterator[StoredItem]:
        """Stream items of ``scope`` in SortKey order, page by page.

        Stops reading from the adapter as soon as the consumer stops iterating.

        Args:
            wanted: Hint for how many items the consumer needs; bounds the
                size of each adapter read
        """
        yielded = 0
        while True:
            check_cancelled(cancel, "scan")

            request = self.page_size
            if wanted is not None:
                request = max(1, min(self.page_size, wanted - yielded))

            if scope.kind is ScopeKind.ALL:
                page = self.adapter.list_all(time_range, request, after=after, ascending=ascending)
            else:
                page = self.adapter.query_range(
                    scope.partition, time_range, request, after=after, ascending=ascending
                )
            metrics.increment("adapter_pages_fetched_total", labels={"scope": scope.kind.value})

            for item in page.items:
                if time_range.contains(item.fact.timestamp_us):
                    yielded += 1
                    yield item

            # A resume position that does not advance would loop forever
            if page.last_evaluated is None or page.last_evaluated == after:
                return
            after = page.last_evaluated

"""Fact Store: the public put/get/delete/query/snapshot surface.

A stateless facade over one BackingStoreAdapter. Range scans are delegated
to the QueryEngine and as-of reconstruction to the SnapshotEngine; the store
itself validates input, attributes failures to the operation that surfaced
them and records metrics.

Error policy:
- Typed FactStoreErrors pass through with ``operation`` set
- Any other adapter failure is wrapped in BackingStoreError (original
  exception kept as ``__cause__``)
- Nothing is retried here; transport retries live in the adapter

Usage:
    from notably.store import create_store

    store = create_store()
    store.initialize()

    store.put_fact(Fact(id="r1", timestamp=now, namespace="ns", field_name="x", value="v1"))
    table = store.get_snapshot_at_time("ns", now)
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from notably.common.cancellation import CancellationToken, cancellation_scope, check_cancelled
from notably.common.config import NotablyConfig, StoreConfig, config
from notably.common.errors import (
    BackingStoreError,
    FactStoreError,
    NotFoundError,
    ValidationError,
)
from notably.common.logging import get_logger
from notably.common.metrics import create_component_metrics
from notably.models import UNBOUNDED, Fact, FieldKey, IdKey, QueryOptions, QueryResult, to_utc
from notably.query.engine import QueryEngine, QueryScope
from notably.query.snapshot import SnapshotEngine
from notably.storage.adapter import BackingStoreAdapter, StoredItem
from notably.storage.codec import decode_value, encode_value

logger = get_logger(__name__, component="store")
metrics = create_component_metrics("store")

Clock = Callable[[], datetime]

_ONE_MICROSECOND = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _require_name(value: Any, name: str) -> None:
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    if not value:
        raise ValidationError(f"{name} is required")


def _require_id(value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("fact id is required")


def validate_fact(fact: Any) -> None:
    """Reject Facts the store cannot persist.

    Raises:
        ValidationError: For a missing fact, an empty id, a missing
            namespace or field name, a non-datetime timestamp, or a value
            that JSON cannot carry unchanged
    """
    if fact is None:
        raise ValidationError("fact is required")
    if not isinstance(fact, Fact):
        raise ValidationError(f"expected a Fact, got {type(fact).__name__}")

    _require_id(fact.id)
    _require_name(fact.namespace, "namespace")
    _require_name(fact.field_name, "field_name")

    if not isinstance(fact.timestamp, datetime):
        raise ValidationError("timestamp must be a datetime")
    if not isinstance(fact.data_type, str):
        raise ValidationError("data_type must be a string")
    if not isinstance(fact.is_deleted, bool):
        raise ValidationError("is_deleted must be a bool")

    try:
        encoded = encode_value(fact.value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"value is not JSON-serializable: {e}") from e
    # Non-string mapping keys and tuples would read back as a different value
    if decode_value(encoded) != fact.value:
        raise ValidationError("value does not survive JSON encoding unchanged")


class FactStore:
    """Append-only temporal fact store.

    Holds no per-call state, so one instance may be shared by any number of
    threads; concurrency control belongs to the adapter.

    Args:
        adapter: Backing store adapter (injected; the store never creates one)
        clock: Source of "now" for tombstone timestamps (default: UTC wall clock)
        page_size: Items requested per adapter read (defaults to config)
    """

    def __init__(
        self,
        adapter: BackingStoreAdapter,
        clock: Optional[Clock] = None,
        page_size: Optional[int] = None,
    ):
        self.adapter = adapter
        self.clock = clock or utc_now
        self.query_engine = QueryEngine(
            adapter, page_size=page_size or config.store.adapter_page_size
        )
        self.snapshot_engine = SnapshotEngine(self.query_engine)

    @contextmanager
    def _operation(
        self, operation: str, cancel: Optional[CancellationToken] = None, **context: Any
    ):
        """Time an operation, record its outcome and normalize its errors."""
        start_time = time.perf_counter()
        status = "success"
        try:
            with cancellation_scope(cancel), logger.timer(operation, **context):
                yield
        except FactStoreError as e:
            status = type(e).__name__
            raise e.with_operation(operation)
        except Exception as e:
            status = BackingStoreError.__name__
            metrics.increment(
                "backing_store_errors_total",
                labels={"operation": operation, "error_type": type(e).__name__},
            )
            logger.error(
                "Backing store call failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise BackingStoreError(str(e) or type(e).__name__, operation) from e
        finally:
            duration = time.perf_counter() - start_time
            metrics.increment(
                "store_operations_total",
                labels={"operation": operation, "status": status},
            )
            metrics.histogram(
                "store_operation_duration_seconds", duration, labels={"operation": operation}
            )

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Provision the backing table. Safe to call more than once."""
        with self._operation("initialize"):
            self.adapter.create_table()

    def is_initialized(self) -> bool:
        with self._operation("is_initialized"):
            return self.adapter.is_initialized()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put_fact(self, fact: Fact, cancel: Optional[CancellationToken] = None) -> None:
        """Append ``fact`` as a new version of its field.

        Raises:
            ValidationError: If the fact is malformed
            NotInitializedError: If the backing table does not exist
            CanceledError: If ``cancel`` fired before the write
            BackingStoreError: If the adapter failed
        """
        with self._operation("put_fact", cancel):
            validate_fact(fact)
            self._append(fact, cancel, "put_fact")

    def delete_fact(self, fact_id: str, cancel: Optional[CancellationToken] = None) -> Fact:
        """Tombstone the latest live version written under ``fact_id``.

        A version is live when it is the newest one this id wrote to its
        field. Fields already tombstoned by this id are skipped, so an id
        written to several fields can be deleted once per field.

        The tombstone keeps the superseded version's namespace, field name,
        data type and columns. Its timestamp is the later of the clock and
        one microsecond after the superseded version, so it always wins.

        Returns:
            The tombstone that was written

        Raises:
            NotFoundError: If the id has no live version
        """
        with self._operation("delete_fact", cancel, fact_id=fact_id):
            latest = self._latest_live(fact_id, cancel).fact

            at = max(to_utc(self.clock()), latest.timestamp + _ONE_MICROSECOND)
            tombstone = latest.tombstone(at)
            self._append(tombstone, cancel, "delete_fact")

            logger.info(
                "Fact deleted",
                fact_id=fact_id,
                namespace=latest.namespace,
                field_name=latest.field_name,
                tombstone_at=at.isoformat(),
            )
            return tombstone

    def _latest_live(self, fact_id: str, cancel: Optional[CancellationToken]) -> StoredItem:
        _require_id(fact_id)

        seen: set[FieldKey] = set()
        for item in self.query_engine.scan(
            QueryScope.for_id(fact_id), UNBOUNDED, ascending=False, cancel=cancel
        ):
            key = item.fact.key
            if key in seen:
                continue
            seen.add(key)
            if not item.fact.is_deleted:
                return item

        if seen:
            raise NotFoundError(f"fact {fact_id!r} has no live version")
        raise NotFoundError(f"no fact with id {fact_id!r}")

    def _append(self, fact: Fact, cancel: Optional[CancellationToken], operation: str) -> StoredItem:
        check_cancelled(cancel, operation)
        item = self.adapter.put_item(fact)
        kind = "tombstone" if fact.is_deleted else "version"
        metrics.increment("facts_written_total", labels={"kind": kind})
        return item

    # ------------------------------------------------------------------
    # Point reads
    # ------------------------------------------------------------------

    def get_fact(self, fact_id: str, cancel: Optional[CancellationToken] = None) -> Fact:
        """Latest version written under ``fact_id`` across all namespaces.

        The result may be a tombstone; callers check ``is_deleted``.
        """
        with self._operation("get_fact", cancel, fact_id=fact_id):
            return self._latest(fact_id, cancel, "get_fact").fact

    def _latest(
        self, fact_id: str, cancel: Optional[CancellationToken], operation: str
    ) -> StoredItem:
        _require_id(fact_id)

        check_cancelled(cancel, operation)
        page = self.adapter.query_range(IdKey(fact_id), UNBOUNDED, 1, ascending=False)
        if not page.items:
            raise NotFoundError(f"no fact with id {fact_id!r}")
        return page.items[0]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_by_field(
        self,
        namespace: str,
        field_name: str,
        options: Optional[QueryOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> QueryResult:
        """Versions of one field, including tombstones."""
        with self._operation("query_by_field", cancel, namespace=namespace, field_name=field_name):
            _require_name(namespace, "namespace")
            _require_name(field_name, "field_name")
            return self._execute(QueryScope.for_field(namespace, field_name), options, cancel)

    def query_by_namespace(
        self,
        namespace: str,
        options: Optional[QueryOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> QueryResult:
        """Versions of every field in one namespace, including tombstones."""
        with self._operation("query_by_namespace", cancel, namespace=namespace):
            _require_name(namespace, "namespace")
            return self._execute(QueryScope.for_namespace(namespace), options, cancel)

    def query_by_time_range(
        self,
        options: Optional[QueryOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> QueryResult:
        """Versions across all namespaces within the options' time window."""
        with self._operation("query_by_time_range", cancel):
            return self._execute(QueryScope.everything(), options, cancel)

    def iter_facts(
        self,
        namespace: Optional[str] = None,
        field_name: Optional[str] = None,
        options: Optional[QueryOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Iterator[Fact]:
        """Yield every matching fact, fetching one page at a time.

        Scope follows the arguments: a field when both are given, a
        namespace when only ``namespace`` is, otherwise all namespaces.
        ``options.limit`` sets the page size.

        Example:
            for fact in store.iter_facts("ns", options=QueryOptions(limit=100)):
                print(fact.field_name, fact.value)
        """
        if field_name is not None and namespace is None:
            raise ValidationError("field_name requires a namespace", "iter_facts")

        options = options or QueryOptions()
        while True:
            with self._operation("iter_facts", cancel, namespace=namespace, field_name=field_name):
                if namespace is None:
                    scope = QueryScope.everything()
                elif field_name is None:
                    _require_name(namespace, "namespace")
                    scope = QueryScope.for_namespace(namespace)
                else:
                    _require_name(namespace, "namespace")
                    _require_name(field_name, "field_name")
                    scope = QueryScope.for_field(namespace, field_name)
                result = self._execute(scope, options, cancel)

            yield from result.facts
            if not result.has_more:
                return
            options = options.next_page(result.continuation_token)

    def _execute(
        self,
        scope: QueryScope,
        options: Optional[QueryOptions],
        cancel: Optional[CancellationToken],
    ) -> QueryResult:
        if options is not None and not isinstance(options, QueryOptions):
            raise ValidationError(f"expected QueryOptions, got {type(options).__name__}")
        return self.query_engine.execute(scope, options, cancel=cancel)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get_snapshot_at_time(
        self,
        namespace: str,
        at: datetime,
        cancel: Optional[CancellationToken] = None,
    ) -> dict[Any, Fact]:
        """Live state as of ``at``.

        Args:
            namespace: Namespace to reconstruct, or "" for all namespaces

        Returns:
            ``{field_name: Fact}`` for one namespace, ``{FieldKey: Fact}``
            for all namespaces. Fields whose latest version is a tombstone
            are absent.
        """
        with self._operation("get_snapshot_at_time", cancel, namespace=namespace):
            if not isinstance(namespace, str):
                raise ValidationError("namespace must be a string")
            if not isinstance(at, datetime):
                raise ValidationError("at must be a datetime")
            return self.snapshot_engine.snapshot(namespace, at, cancel=cancel)

    def get_snapshot_by_namespace(
        self,
        at: datetime,
        cancel: Optional[CancellationToken] = None,
    ) -> dict[str, dict[str, Fact]]:
        """All-namespace snapshot grouped by namespace, then field name."""
        with self._operation("get_snapshot_by_namespace", cancel):
            if not isinstance(at, datetime):
                raise ValidationError("at must be a datetime")
            return self.snapshot_engine.snapshot_by_namespace(at, cancel=cancel)

    def close(self) -> None:
        self.adapter.close()

    def __enter__(self) -> "FactStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# ==============================================================================
# Factories
# ==============================================================================


def create_adapter(store_config: Optional[StoreConfig] = None) -> BackingStoreAdapter:
    """Build the adapter selected by ``store_config.backend``."""
    store_config = store_config or config.store

    if store_config.backend == "memory":
        from notably.storage.memory import InMemoryAdapter

        return InMemoryAdapter()

    from notably.storage.duckdb_store import DuckDBAdapter

    return DuckDBAdapter(
        database=store_config.database,
        table_name=store_config.table_name,
        pool_size=store_config.pool_size,
        max_page_size=store_config.adapter_page_size,
        acquire_timeout=store_config.acquire_timeout_seconds,
        max_retries=store_config.max_retries,
        retry_initial_delay=store_config.retry_initial_delay,
        retry_max_delay=store_config.retry_max_delay,
        memory_limit=store_config.memory_limit,
    )


def create_store(
    settings: Optional[NotablyConfig] = None,
    clock: Optional[Clock] = None,
) -> FactStore:
    """Build a FactStore wired to the configured backing store.

    Example:
        with create_store() as store:
            store.initialize()
            store.put_fact(fact)
    """
    settings = settings or config
    adapter = create_adapter(settings.store)

    logger.info(
        "Fact store created",
        backend=settings.store.backend,
        environment=settings.environment,
    )
    return FactStore(adapter, clock=clock, page_size=settings.store.adapter_page_size)

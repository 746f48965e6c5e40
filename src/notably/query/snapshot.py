"""Snapshot Engine: reconstruct the logical table as of an instant.

For a namespace (or every namespace) and an instant ``at``:

1. Read every version with ``timestamp <= at`` in scope.
2. Group versions by FieldKey ``(namespace, field_name)``.
3. Keep the version with the greatest SortKey in each group.
4. Drop groups whose winner is a tombstone, so a deleted field is absent
   exactly as if it never existed at that moment.

This is the only place deletions become invisible; list queries still
return tombstones so history stays inspectable.

``at`` is normalized to canonical UTC microseconds, the same form used for
stored timestamps, so callers in any timezone get the same answer.

Usage:
    engine = SnapshotEngine(QueryEngine(adapter))

    table = engine.snapshot("tenant-1#users", datetime(2024, 5, 1, tzinfo=timezone.utc))
    for field_name, fact in table.items():
        print(field_name, fact.value)
"""

from collections import defaultdict
from datetime import datetime
from typing import Optional, Union

from notably.common.cancellation import CancellationToken
from notably.common.logging import get_logger
from notably.common.metrics import create_component_metrics
from notably.models import Fact, FieldKey, TimeRange, to_epoch_us
from notably.query.engine import QueryEngine, QueryScope
from notably.storage.adapter import StoredItem

logger = get_logger(__name__, component="snapshot")
metrics = create_component_metrics("snapshot")

SnapshotKey = Union[str, FieldKey]


class SnapshotEngine:
    """Computes as-of state by reducing each version chain to one Fact."""

    def __init__(self, query_engine: QueryEngine):
        self.query_engine = query_engine

    def latest_versions(
        self,
        namespace: str,
        at: datetime,
        cancel: Optional[CancellationToken] = None,
    ) -> dict[FieldKey, StoredItem]:
        """Winning version per key as of ``at``, tombstones included."""
        scope = QueryScope.for_namespace(namespace) if namespace else QueryScope.everything()
        window = TimeRange(start_us=None, end_us=to_epoch_us(at))

        winners: dict[FieldKey, StoredItem] = {}
        for item in self.query_engine.scan(scope, window, ascending=True, cancel=cancel):
            key = item.fact.key
            current = winners.get(key)
            if current is None or item.sort_key > current.sort_key:
                winners[key] = item
        return winners

    def snapshot(
        self,
        namespace: str,
        at: datetime,
        cancel: Optional[CancellationToken] = None,
    ) -> dict[SnapshotKey, Fact]:
        """Live facts as of ``at``.

        Returns:
            ``{field_name: Fact}`` when scoped to a namespace, or
            ``{FieldKey: Fact}`` when ``namespace`` is empty (all namespaces)
        """
        winners = self.latest_versions(namespace, at, cancel=cancel)

        result: dict[SnapshotKey, Fact] = {}
        tombstoned = 0
        for key, item in winners.items():
            if item.fact.is_deleted:
                tombstoned += 1
                continue
            result[key.field_name if namespace else key] = item.fact

        scope = "namespace" if namespace else "all"
        metrics.histogram("snapshot_keys", len(result), labels={"scope": scope})
        logger.debug(
            "Snapshot reconstructed",
            namespace=namespace or None,
            at=at.isoformat(),
            live_keys=len(result),
            tombstoned_keys=tombstoned,
        )
        return result

    def snapshot_by_namespace(
        self,
        at: datetime,
        cancel: Optional[CancellationToken] = None,
    ) -> dict[str, dict[str, Fact]]:
        """All-namespace snapshot grouped as ``{namespace: {field_name: Fact}}``."""
        grouped: dict[str, dict[str, Fact]] = defaultdict(dict)
        for key, fact in self.snapshot("", at, cancel=cancel).items():
            grouped[key.namespace][key.field_name] = fact
        return dict(grouped)

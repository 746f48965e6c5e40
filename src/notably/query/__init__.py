"""Notably Query Layer - ordered range reads and as-of snapshots.

Components:
- QueryEngine: Time-window filtering, SortKey ordering, keyset pagination
- SnapshotEngine: Reconstructs live state as of an instant
- pagination: Continuation token encoding

Usage:
    from notably.query import QueryEngine, QueryScope, SnapshotEngine

    engine = QueryEngine(adapter)
    page = engine.execute(QueryScope.for_namespace("ns"), QueryOptions(limit=100))

    snapshots = SnapshotEngine(engine)
    table = snapshots.snapshot("ns", at)
"""

from notably.query.engine import QueryEngine, QueryScope, ScopeKind
from notably.query.snapshot import SnapshotEngine

__all__ = [
    "QueryEngine",
    "QueryScope",
    "ScopeKind",
    "SnapshotEngine",
]

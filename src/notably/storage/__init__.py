"""Storage layer for the fact store.

Every Fact version is persisted as one item through a BackingStoreAdapter.
Two implementations share the protocol:
- memory: InMemoryAdapter, an isolated per-instance test double
- duckdb_store: DuckDBAdapter, durable storage with pooled cursors and
  transport retries

Components:
- adapter: The adapter protocol and its value shapes (StoredItem, Page)
- codec: Fact <-> row encoding
"""

from . import adapter, codec, duckdb_store, memory

__all__ = ["adapter", "codec", "duckdb_store", "memory"]

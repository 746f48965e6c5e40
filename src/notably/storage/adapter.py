"""Backing store adapter contract.

The fact store talks to durable storage only through this protocol. An
adapter stores one item per Fact version and serves ordered range reads
over three partitions, the way a partition/sort-key store with secondary
indexes would:

- FieldKey: all versions of one ``(namespace, field_name)``
- NamespaceKey: all versions in one namespace
- IdKey: all versions written under one Fact id

plus a global time-ordered listing. Items within a partition are ordered by
SortKey. Pagination is keyset-based: ``after`` is the SortKey of the last
item already seen (exclusive), and ``Page.last_evaluated`` is where the next
read should resume, or None once the partition is exhausted.

Implementations:
- InMemoryAdapter (notably.storage.memory): test double
- DuckDBAdapter (notably.storage.duckdb_store): durable, pooled
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol

from notably.models import Fact, PartitionKey, SortKey, TimeRange


@dataclass(frozen=True)
class StoredItem:
    """A Fact as persisted, with its adapter-assigned insertion sequence."""

    fact: Fact
    sequence: int

    @property
    def sort_key(self) -> SortKey:
        return SortKey(self.fact.timestamp_us, self.fact.id, self.sequence)


@dataclass
class Page:
    """One adapter read: ordered items plus the resume position."""

    items: list[StoredItem] = field(default_factory=list)
    last_evaluated: Optional[SortKey] = None


class BackingStoreAdapter(Protocol):
    """Protocol implemented by every backing store."""

    def create_table(self) -> None:
        """Provision storage. Idempotent."""
        ...

    def drop_table(self) -> None:
        """Remove storage and every stored item."""
        ...

    def is_initialized(self) -> bool:
        ...

    def put_item(self, fact: Fact) -> StoredItem:
        """Append one Fact version atomically and return it with its sequence.

        Raises:
            NotInitializedError: If storage has not been provisioned
        """
        ...

    def query_range(
        self,
        partition: PartitionKey,
        sort_range: TimeRange,
        limit: int,
        after: Optional[SortKey] = None,
        ascending: bool = True,
    ) -> Page:
        """Read up to ``limit`` items of one partition within ``sort_range``."""
        ...

    def list_all(
        self,
        time_range: TimeRange,
        limit: int,
        after: Optional[SortKey] = None,
        ascending: bool = True,
    ) -> Page:
        """Read up to ``limit`` items across all partitions within ``time_range``."""
        ...

    def close(self) -> None:
        ...

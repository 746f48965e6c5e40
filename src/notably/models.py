"""Fact model and the value shapes exposed by the fact store.

A Fact is one immutable, timestamped version of a field. Versions of the
same field share a FieldKey ``(namespace, field_name)`` and are totally
ordered by SortKey ``(timestamp_us, fact_id, sequence)``:

- timestamp_us: canonical UTC microseconds since the Unix epoch
- fact_id: deterministic tie-break for equal timestamps
- sequence: adapter-assigned insertion number, breaks the remaining ties
  so two otherwise identical writes stay distinct versions

All time comparisons happen on the canonical integer form, never on
display strings or timezone-aware datetimes with differing offsets.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)


# ==============================================================================
# Time normalization
# ==============================================================================


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive datetimes are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_us(value: datetime) -> int:
    """Convert a datetime to integer microseconds since the epoch (UTC)."""
    return (to_utc(value) - EPOCH) // _ONE_MICROSECOND


def from_epoch_us(value: int) -> datetime:
    """Inverse of to_epoch_us; returns an aware UTC datetime."""
    return EPOCH + timedelta(microseconds=value)


# ==============================================================================
# Enums and value types
# ==============================================================================


class DataType(str, Enum):
    """Common data type tags. The store treats data_type as opaque."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"
    TABLE = "table"


@dataclass(frozen=True)
class ColumnDefinition:
    """One column of a table-definition Fact."""

    name: str
    data_type: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "dataType": self.data_type}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnDefinition":
        return cls(name=data["name"], data_type=data.get("dataType", data.get("data_type", "")))


def _coerce_column(column: Any) -> ColumnDefinition:
    if isinstance(column, ColumnDefinition):
        return column
    if isinstance(column, dict):
        return ColumnDefinition.from_dict(column)
    name, data_type = column
    return ColumnDefinition(name=name, data_type=data_type)


@dataclass(frozen=True)
class Fact:
    """One versioned observation of a field.

    Immutable once constructed. ``timestamp`` is normalized to aware UTC
    with microsecond resolution, so a Fact read back from any adapter
    compares equal to the Fact that was written.
    """

    id: str
    timestamp: datetime
    namespace: str
    field_name: str
    data_type: str = DataType.STRING.value
    value: Any = None
    is_deleted: bool = False
    columns: tuple[ColumnDefinition, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.timestamp, datetime):
            object.__setattr__(self, "timestamp", to_utc(self.timestamp))
        if isinstance(self.data_type, Enum):
            object.__setattr__(self, "data_type", self.data_type.value)
        if self.columns is None:
            object.__setattr__(self, "columns", ())
        elif not isinstance(self.columns, tuple) or not all(
            isinstance(c, ColumnDefinition) for c in self.columns
        ):
            object.__setattr__(self, "columns", tuple(_coerce_column(c) for c in self.columns))

    @property
    def key(self) -> "FieldKey":
        return FieldKey(self.namespace, self.field_name)

    @property
    def timestamp_us(self) -> int:
        return to_epoch_us(self.timestamp)

    def tombstone(self, at: datetime) -> "Fact":
        """Deletion marker superseding this version at ``at``."""
        return replace(self, timestamp=at, value=None, is_deleted=True)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "namespace": self.namespace,
            "fieldName": self.field_name,
            "dataType": self.data_type,
            "value": self.value,
            "isDeleted": self.is_deleted,
        }
        if self.columns:
            data["columns"] = [c.to_dict() for c in self.columns]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Fact":
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            id=data["id"],
            timestamp=timestamp,
            namespace=data.get("namespace", ""),
            field_name=data.get("fieldName", data.get("field_name", "")),
            data_type=data.get("dataType", data.get("data_type", DataType.STRING.value)),
            value=data.get("value"),
            is_deleted=bool(data.get("isDeleted", data.get("is_deleted", False))),
            columns=tuple(_coerce_column(c) for c in data.get("columns") or ()),
        )


# ==============================================================================
# Keys
# ==============================================================================


@dataclass(frozen=True, order=True)
class FieldKey:
    """Composite ``(namespace, field_name)`` key of a version chain."""

    namespace: str
    field_name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.field_name}"


@dataclass(frozen=True, order=True)
class NamespaceKey:
    """Partition holding every field of one namespace."""

    namespace: str


@dataclass(frozen=True, order=True)
class IdKey:
    """Partition holding every version written under one Fact id."""

    fact_id: str


PartitionKey = Union[FieldKey, NamespaceKey, IdKey]


@dataclass(frozen=True, order=True)
class SortKey:
    """Total order of versions: timestamp, then fact id, then insertion sequence."""

    timestamp_us: int
    fact_id: str
    sequence: int

    def to_list(self) -> list[Any]:
        return [self.timestamp_us, self.fact_id, self.sequence]

    @classmethod
    def from_list(cls, values: list[Any]) -> "SortKey":
        timestamp_us, fact_id, sequence = values
        if (
            not isinstance(timestamp_us, int)
            or isinstance(timestamp_us, bool)
            or not isinstance(fact_id, str)
            or not isinstance(sequence, int)
            or isinstance(sequence, bool)
        ):
            raise TypeError("sort key must be [int, str, int]")
        return cls(timestamp_us, fact_id, sequence)


@dataclass(frozen=True)
class TimeRange:
    """Inclusive ``[start_us, end_us]`` window; None is unbounded on that side."""

    start_us: Optional[int] = None
    end_us: Optional[int] = None

    @classmethod
    def from_datetimes(
        cls, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> "TimeRange":
        return cls(
            start_us=to_epoch_us(start) if start is not None else None,
            end_us=to_epoch_us(end) if end is not None else None,
        )

    def contains(self, timestamp_us: int) -> bool:
        if self.start_us is not None and timestamp_us < self.start_us:
            return False
        if self.end_us is not None and timestamp_us > self.end_us:
            return False
        return True

    @property
    def is_empty(self) -> bool:
        return (
            self.start_us is not None
            and self.end_us is not None
            and self.start_us > self.end_us
        )


UNBOUNDED = TimeRange()


# ==============================================================================
# Query value shapes
# ==============================================================================


@dataclass(frozen=True)
class QueryOptions:
    """Options shared by every list-style query.

    Attributes:
        start_time: Inclusive lower bound (None = unbounded)
        end_time: Inclusive upper bound (None = unbounded)
        sort_ascending: Oldest first when True; newest first by default
        limit: Maximum facts per page (None = all)
        continuation_token: Token from a previous QueryResult
    """

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    sort_ascending: bool = False
    limit: Optional[int] = None
    continuation_token: Optional[str] = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_datetimes(self.start_time, self.end_time)

    def next_page(self, token: Optional[str]) -> "QueryOptions":
        return replace(self, continuation_token=token)


@dataclass
class QueryResult:
    """One page of facts plus the token for the next page (None at the end)."""

    facts: list[Fact] = field(default_factory=list)
    continuation_token: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.continuation_token is not None

    def __len__(self) -> int:
        return len(self.facts)

"""Encoding between Facts and flat storage rows.

A row is a dict of primitives that any backing store can persist as one
item. ``value`` and ``columns`` are JSON text so a whole Fact is written and
read as a single record.
"""

import json
from typing import Any

from notably.models import ColumnDefinition, Fact, from_epoch_us
from notably.storage.adapter import StoredItem

ROW_FIELDS = (
    "sequence",
    "timestamp_us",
    "fact_id",
    "namespace",
    "field_name",
    "data_type",
    "value_json",
    "is_deleted",
    "columns_json",
)


def encode_value(value: Any) -> str:
    """Serialize a Fact value.

    Raises:
        TypeError, ValueError: If the value is not JSON-compatible
    """
    return json.dumps(value, allow_nan=False, separators=(",", ":"))


def decode_value(value_json: str) -> Any:
    return json.loads(value_json)


def encode_row(fact: Fact, sequence: int) -> dict[str, Any]:
    """Convert a Fact into a storage row."""
    columns_json = None
    if fact.columns:
        columns_json = json.dumps([c.to_dict() for c in fact.columns], separators=(",", ":"))

    return {
        "sequence": sequence,
        "timestamp_us": fact.timestamp_us,
        "fact_id": fact.id,
        "namespace": fact.namespace,
        "field_name": fact.field_name,
        "data_type": fact.data_type,
        "value_json": encode_value(fact.value),
        "is_deleted": bool(fact.is_deleted),
        "columns_json": columns_json,
    }


def decode_row(row: dict[str, Any]) -> StoredItem:
    """Convert a storage row back into a StoredItem."""
    columns: tuple[ColumnDefinition, ...] = ()
    if row.get("columns_json"):
        columns = tuple(ColumnDefinition.from_dict(c) for c in json.loads(row["columns_json"]))

    fact = Fact(
        id=row["fact_id"],
        timestamp=from_epoch_us(row["timestamp_us"]),
        namespace=row["namespace"],
        field_name=row["field_name"],
        data_type=row["data_type"],
        value=decode_value(row["value_json"]) if row.get("value_json") is not None else None,
        is_deleted=bool(row["is_deleted"]),
        columns=columns,
    )
    return StoredItem(fact=fact, sequence=int(row["sequence"]))


def decode_tuple(values: tuple) -> StoredItem:
    """Decode a row fetched positionally in ROW_FIELDS order."""
    return decode_row(dict(zip(ROW_FIELDS, values)))

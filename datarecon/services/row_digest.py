"""
Row Digest
Reduces a result row to (migration key, SHA-256 digest of the non-key values)

Canonical serialization, identical for source and target rows:
- the migration key is `key_column` when given, otherwise the first column
- non-key values keep result-set column order
- None -> null; str/int/float/bool as-is; Decimal -> str; date/time -> ISO-8601;
  bytes-like -> lower-case hex; anything else -> str()
- values are encoded as a compact JSON array and hashed as UTF-8
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple
import hashlib
import json

from sqlalchemy.engine import Row

from datarecon.exceptions import ExecutionError
from datarecon.models.results import ColumnMeta, DatasetMeta


@dataclass(frozen=True)
class HashedRow:
    migration_key: str
    hashed_value: str


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def digest_values(values: Sequence[Any]) -> str:
    """SHA-256 (lower-case hex) over the canonical encoding of `values`."""
    payload = json.dumps(
        [_normalize(v) for v in values],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _key_index(fields: Sequence[str], key_column: Optional[str]) -> int:
    if key_column is None:
        return 0
    try:
        return list(fields).index(key_column)
    except ValueError:
        lowered = [f.lower() for f in fields]
        if key_column.lower() in lowered:
            return lowered.index(key_column.lower())
        raise ExecutionError(f"Key column [{key_column}] not present in result columns {list(fields)}") from None


def hash_row(row: Row, key_column: Optional[str] = None) -> HashedRow:
    """
    Digest a row.

    Raises:
        ExecutionError: empty row, unknown key column or NULL migration key
    """
    fields = list(row._fields)
    if not fields:
        raise ExecutionError("Cannot reconcile a row without columns")

    index = _key_index(fields, key_column)
    key = row[index]
    if key is None:
        raise ExecutionError(f"NULL migration key in column [{fields[index]}]")

    values: List[Any] = [v for i, v in enumerate(row) if i != index]
    return HashedRow(migration_key=str(key), hashed_value=digest_values(values))


# Reported for a column the driver leaves untyped and that is NULL in every row
NULL_TYPE = "NULL"


class ColumnMetaCollector:
    """
    Column names and types for one stream, in result-set order.

    Types are the ones the driver declares for the result columns. A column
    the driver leaves untyped (SQLite reports none) takes the Python type of
    its first non-NULL value.
    """

    def __init__(self, columns: Sequence[Tuple[str, Optional[str]]]):
        self.names = [name for name, _ in columns]
        self.types: List[Optional[str]] = [type_name for _, type_name in columns]
        self._untyped = [i for i, type_name in enumerate(self.types) if type_name is None]

    def observe(self, row: Row) -> None:
        if not self._untyped:
            return
        untyped = []
        for i in self._untyped:
            value = row[i]
            if value is None:
                untyped.append(i)
            else:
                self.types[i] = type(value).__name__
        self._untyped = untyped

    def meta(self) -> DatasetMeta:
        return DatasetMeta(
            cols=[
                ColumnMeta(name=name, type_name=type_name or NULL_TYPE)
                for name, type_name in zip(self.names, self.types)
            ]
        )

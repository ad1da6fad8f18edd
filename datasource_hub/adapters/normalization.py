"""
Normalization of native results and types into the shared contracts.

Every plugin funnels its driver output through ``build_result`` (or
``frame_to_result`` for pandas frames) so callers always see rows keyed by
column name and columns typed with the framework's type names.
"""

import datetime as dt
import numbers
import re
import time
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd
from pandas.api import types as ptypes
from sqlalchemy.types import TypeEngine

from datasource_hub.models import ColumnInfo, QueryResult

STRING = "string"
INTEGER = "integer"
NUMBER = "number"
BOOLEAN = "boolean"
DATE = "date"
DATETIME = "datetime"
TIME = "time"
BINARY = "binary"
JSON = "json"
UUID = "uuid"
UNKNOWN = "unknown"

FRAMEWORK_TYPES = (STRING, INTEGER, NUMBER, BOOLEAN, DATE, DATETIME, TIME, BINARY, JSON, UUID, UNKNOWN)

_SQL_TYPES: Dict[str, str] = {}
for _type, _names in {
    STRING: (
        "varchar", "char", "character", "character varying", "text", "nvarchar", "nchar",
        "ntext", "string", "clob", "nclob", "varchar2", "nvarchar2", "tinytext",
        "mediumtext", "longtext", "enum", "set", "citext", "name", "bpchar", "interval",
    ),
    INTEGER: (
        "int", "integer", "smallint", "bigint", "tinyint", "mediumint", "serial", "bigserial",
        "smallserial", "int2", "int4", "int8", "long", "short", "byte", "byteint",
    ),
    NUMBER: (
        "float", "double", "double precision", "real", "decimal", "numeric", "number",
        "money", "smallmoney", "float4", "float8", "binary_float", "binary_double",
    ),
    BOOLEAN: ("boolean", "bool", "bit"),
    DATE: ("date",),
    DATETIME: (
        "datetime", "datetime2", "timestamp", "timestamptz", "timestamp_ntz", "timestamp_ltz",
        "timestamp_tz", "smalldatetime", "datetimeoffset",
    ),
    TIME: ("time", "timetz"),
    BINARY: (
        "blob", "bytea", "binary", "varbinary", "longblob", "mediumblob", "tinyblob", "raw",
        "long raw", "image", "largebinary",
    ),
    JSON: ("json", "jsonb", "variant", "object", "array", "map", "struct", "row", "super"),
    UUID: ("uuid", "uniqueidentifier"),
}.items():
    for _name in _names:
        _SQL_TYPES[_name] = _type

_MODIFIERS = re.compile(
    r"\b(unsigned|signed|zerofill|with(out)? (local )?time zone|not null|identity|auto_increment)\b"
)


def normalize_type(native: Any) -> str:
    """
    Map a backend type to a framework type name.

    Accepts SQL type strings (``VARCHAR(255)``, ``timestamp with time zone``,
    ``array<string>``), SQLAlchemy type objects and Python types.
    """
    if native is None:
        return UNKNOWN
    if isinstance(native, type):
        return _python_type(native)
    if isinstance(native, TypeEngine):
        try:
            native = str(native)
        except Exception:
            native = type(native).__name__
    if isinstance(native, Mapping):
        # Nested Delta/Spark schema entries are dicts
        return JSON
    if not isinstance(native, str):
        return UNKNOWN

    name = native.strip().lower()
    if not name:
        return UNKNOWN
    if name.endswith("[]"):
        return JSON
    name = re.sub(r"[(<].*$", "", name)
    name = _MODIFIERS.sub("", name)
    name = " ".join(name.split())
    if name in _SQL_TYPES:
        return _SQL_TYPES[name]
    head = name.split(" ", 1)[0] if name else ""
    return _SQL_TYPES.get(head, UNKNOWN)


def _python_type(py_type: type) -> str:
    # Order matters: bool is an int, datetime is a date
    if issubclass(py_type, bool):
        return BOOLEAN
    if issubclass(py_type, numbers.Integral):
        return INTEGER
    if issubclass(py_type, (numbers.Real, Decimal)):
        return NUMBER
    if issubclass(py_type, str):
        return STRING
    if issubclass(py_type, dt.datetime):
        return DATETIME
    if issubclass(py_type, dt.date):
        return DATE
    if issubclass(py_type, dt.time):
        return TIME
    if issubclass(py_type, (bytes, bytearray, memoryview)):
        return BINARY
    if issubclass(py_type, uuid.UUID):
        return UUID
    if issubclass(py_type, (dict, list, tuple)):
        return JSON
    return UNKNOWN


def infer_type(value: Any) -> str:
    """Framework type of a single value; ``unknown`` for None."""
    if value is None:
        return UNKNOWN
    if hasattr(value, "dtype") and type(value).__module__ == "numpy":
        return normalize_dtype(value.dtype)
    return _python_type(type(value))


def normalize_dtype(dtype: Any) -> str:
    """Map a pandas/numpy dtype to a framework type name."""
    if ptypes.is_bool_dtype(dtype):
        return BOOLEAN
    if ptypes.is_integer_dtype(dtype):
        return INTEGER
    if ptypes.is_float_dtype(dtype) or ptypes.is_complex_dtype(dtype):
        return NUMBER
    if ptypes.is_datetime64_any_dtype(dtype):
        return DATETIME
    if ptypes.is_timedelta64_dtype(dtype):
        return STRING
    if ptypes.is_string_dtype(dtype) or ptypes.is_object_dtype(dtype):
        return STRING
    return UNKNOWN


def infer_columns(rows: Iterable[Mapping[str, Any]]) -> List[ColumnInfo]:
    """Ordered union of row keys, typed from the first non-null value."""
    rows = list(rows)
    order: List[str] = []
    types: Dict[str, str] = {}
    nullable: Dict[str, bool] = {}

    for row in rows:
        for key, value in row.items():
            if key not in types:
                order.append(key)
                types[key] = UNKNOWN
                nullable[key] = False
            if value is None:
                nullable[key] = True
            elif types[key] == UNKNOWN:
                types[key] = infer_type(value)

    for key in order:
        if any(key not in row for row in rows):
            nullable[key] = True

    return [ColumnInfo(name=key, type=types[key], nullable=nullable[key]) for key in order]


def build_result(
    rows: Iterable[Mapping[str, Any]],
    columns: Optional[Sequence[Union[ColumnInfo, str]]] = None,
    query_id: Optional[str] = None,
    affected_rows: Optional[int] = None,
) -> QueryResult:
    """
    Assemble a QueryResult whose rows carry exactly the listed columns.

    Args:
        rows: Native rows as mappings
        columns: Column order and types; inferred from rows when omitted
        query_id: Backend execution id, if any
        affected_rows: Row count reported by a mutation with no result set

    Returns:
        QueryResult with ``execution_time_ms`` left for the caller to fill
    """
    rows = [dict(row) for row in rows]
    inferred = {c.name: c for c in infer_columns(rows)}

    if columns is None:
        resolved = list(inferred.values())
    else:
        resolved = []
        for column in columns:
            if isinstance(column, ColumnInfo):
                resolved.append(column)
            else:
                resolved.append(inferred.get(column) or ColumnInfo(name=column))

    names = [c.name for c in resolved]
    shaped = [{name: row.get(name) for name in names} for row in rows]

    if shaped:
        row_count = len(shaped)
    else:
        row_count = max(affected_rows or 0, 0)

    return QueryResult(rows=shaped, columns=resolved, row_count=row_count, query_id=query_id)


def frame_to_result(frame: pd.DataFrame, query_id: Optional[str] = None) -> QueryResult:
    """Convert a DataFrame to a QueryResult with NaN/NaT as None."""
    columns = []
    for name in frame.columns:
        series = frame[name]
        col_type = normalize_dtype(series.dtype)
        if ptypes.is_object_dtype(series.dtype):
            first = series.dropna()
            if len(first):
                col_type = infer_type(first.iloc[0])
        columns.append(ColumnInfo(name=str(name), type=col_type, nullable=bool(series.isna().any())))

    cleaned = frame.astype(object).where(pd.notna(frame), None)
    cleaned.columns = [str(c) for c in frame.columns]
    rows = cleaned.to_dict(orient="records")
    return build_result(rows, columns, query_id=query_id)


class Stopwatch:
    """Wall-clock timer in milliseconds, rounded the way query logs report it."""

    def __init__(self):
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._start) * 1000, 2)

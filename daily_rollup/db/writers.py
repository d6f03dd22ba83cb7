"""Producer-side append of raw records.

Ingestion is owned by the producer; this helper exists for seeding and tests.
Values are written as given (malformed rows included) apart from timestamps,
which are stored as naive UTC.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import insert
from sqlalchemy.engine import Connection

from daily_rollup.db.schema import raw_records
from daily_rollup.utils.time import to_utc_naive

_RAW_COLUMNS = ("id", "customer_id", "product_id", "quantity", "timestamp", "status")


def _raw_params(record: Mapping[str, Any]) -> dict[str, Any]:
    params = {col: record.get(col) for col in _RAW_COLUMNS}
    ts = params["timestamp"]
    if isinstance(ts, datetime):
        params["timestamp"] = to_utc_naive(ts)
    for col in ("customer_id", "product_id"):
        if params[col] is not None:
            params[col] = str(params[col])
    return params


def insert_raw_records(conn: Connection, records: Iterable[Mapping[str, Any]]) -> int:
    rows = [_raw_params(r) for r in records]
    if not rows:
        return 0
    conn.execute(insert(raw_records), rows)
    return len(rows)

from __future__ import annotations

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

# Append-only input owned by the producer. `seq` is the ingestion order and
# breaks ties between raw rows sharing an `id`.
raw_records = Table(
    "raw_records",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", Integer, nullable=True, index=True),
    Column("customer_id", String(64), nullable=True),
    Column("product_id", String(64), nullable=True),
    Column("quantity", Integer, nullable=True),
    Column("timestamp", DateTime, nullable=True),
    Column("status", String(32), nullable=True, index=True),
)

filtered_records = Table(
    "filtered_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("product_id", String(64), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("date", Date, nullable=False, index=True),
    Column("status", String(32), nullable=False),
)

daily_aggregates = Table(
    "daily_aggregates",
    metadata,
    Column("date", Date, primary_key=True),
    Column("total_quantity", Integer, nullable=False),
    Column("completed_count", Integer, nullable=False),
    Column("refunded_count", Integer, nullable=False),
)

run_records = Table(
    "run_records",
    metadata,
    Column("run_id", Integer, primary_key=True, autoincrement=True),
    Column("stage_id", String(64), nullable=False, index=True),
    Column("scheduled_time", DateTime, nullable=False, index=True),
    Column("start_time", DateTime, nullable=False),
    Column("end_time", DateTime, nullable=True),
    Column("outcome", String(16), nullable=False),
    Column("rows_affected", Integer, nullable=False, default=0),
    Column("error_message", Text, nullable=True),
)


def ensure_schema(engine: Engine) -> None:
    metadata.create_all(engine, checkfirst=True)

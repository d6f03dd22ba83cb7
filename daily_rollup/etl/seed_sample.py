from __future__ import annotations

from datetime import datetime

from sqlalchemy.engine import Engine

from daily_rollup.db.writers import insert_raw_records

SAMPLE_RAW_RECORDS: list[dict[str, object]] = [
    {
        "id": 4,
        "customer_id": "c-104",
        "product_id": "p-1",
        "quantity": 3,
        "timestamp": datetime(2024, 12, 2, 9, 15),
        "status": "completed",
    },
    {
        "id": 5,
        "customer_id": "c-105",
        "product_id": "p-2",
        "quantity": 1,
        "timestamp": datetime(2024, 12, 2, 10, 40),
        "status": "pending",
    },
    {
        "id": 6,
        "customer_id": "c-106",
        "product_id": "p-1",
        "quantity": 4,
        "timestamp": datetime(2024, 12, 2, 17, 5),
        "status": "completed",
    },
]


def seed_sample(engine: Engine) -> int:
    with engine.begin() as conn:
        return insert_raw_records(conn, SAMPLE_RAW_RECORDS)

"""
Pytest configuration and fixtures for the rollup pipeline tests.

Every test gets its own SQLite file under tmp_path, so no external services
are needed.
"""
from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine

from daily_rollup.config import Settings
from daily_rollup.db.engine import get_engine
from daily_rollup.db.schema import daily_aggregates, ensure_schema, filtered_records
from daily_rollup.db.writers import insert_raw_records
from daily_rollup.etl.aggregate_stage import AggregateStage
from daily_rollup.etl.filter_stage import FilterStage
from daily_rollup.etl.merge import MergeEngine
from daily_rollup.jobs.dependency import DependencyScheduler
from daily_rollup.ops.run_logger import RunLog


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests against a throwaway SQLite store")
    config.addinivalue_line(
        "markers", "integration: Tests that wire the full pipeline or the HTTP surface"
    )


def _raw(
    id: Any,
    status: str,
    quantity: Any = 1,
    timestamp: datetime | None = datetime(2024, 12, 2, 12, 0),
    product_id: Any = "p-1",
    customer_id: Any = "c-1",
) -> dict[str, Any]:
    return {
        "id": id,
        "customer_id": customer_id,
        "product_id": product_id,
        "quantity": quantity,
        "timestamp": timestamp,
        "status": status,
    }


@pytest.fixture
def raw() -> Callable[..., dict[str, Any]]:
    """Build a raw record dict; defaults to a single unit on 2024-12-02."""
    return _raw


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'rollup.db'}",
        STAGE_TIMEOUT_SECONDS=10,
    )


@pytest.fixture
def engine(settings) -> Iterator[Engine]:
    eng = get_engine(settings)
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def add_raw(engine) -> Callable[..., int]:
    def _add(*records: Mapping[str, Any]) -> int:
        with engine.begin() as conn:
            return insert_raw_records(conn, records)

    return _add


@pytest.fixture
def merge_engine(engine) -> MergeEngine:
    return MergeEngine(engine)


@pytest.fixture
def filter_stage(engine, merge_engine) -> FilterStage:
    return FilterStage(engine, merge_engine)


@pytest.fixture
def aggregate_stage(engine, merge_engine) -> AggregateStage:
    return AggregateStage(engine, merge_engine)


@pytest.fixture
def run_log(engine) -> RunLog:
    return RunLog(engine)


@pytest.fixture
def scheduler(filter_stage, aggregate_stage, run_log) -> Iterator[DependencyScheduler]:
    sched = DependencyScheduler(
        [filter_stage, aggregate_stage], run_log, stage_timeout_seconds=10
    )
    yield sched
    sched.shutdown(wait=True)


@pytest.fixture
def filtered_rows(engine) -> Callable[[], list[dict[str, Any]]]:
    def _rows() -> list[dict[str, Any]]:
        with engine.connect() as conn:
            stmt = select(filtered_records).order_by(filtered_records.c.id)
            return [dict(r) for r in conn.execute(stmt).mappings()]

    return _rows


@pytest.fixture
def aggregate_rows(engine) -> Callable[[], list[dict[str, Any]]]:
    def _rows() -> list[dict[str, Any]]:
        with engine.connect() as conn:
            stmt = select(daily_aggregates).order_by(daily_aggregates.c.date)
            return [dict(r) for r in conn.execute(stmt).mappings()]

    return _rows

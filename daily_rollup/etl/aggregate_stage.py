from __future__ import annotations

from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from daily_rollup.db.schema import daily_aggregates, filtered_records
from daily_rollup.errors import translate_store_error
from daily_rollup.etl.merge import MergeEngine
from daily_rollup.etl.stage import StageResult
from daily_rollup.models.records import AggregateRecord

AGGREGATE_STAGE_ID = "aggregate"
AGGREGATE_UPDATE_FIELDS = ("total_quantity", "completed_count", "refunded_count")


def _status_count(status: str):
    return func.coalesce(
        func.sum(case((filtered_records.c.status == status, 1), else_=0)), 0
    )


class AggregateStage:
    """Full per-date rollup of the filtered set, recomputed for every date."""

    stage_id = AGGREGATE_STAGE_ID

    def __init__(self, engine: Engine, merge_engine: MergeEngine) -> None:
        self._engine = engine
        self._merge = merge_engine

    def compute(self) -> list[dict[str, Any]]:
        fr = filtered_records
        stmt = (
            select(
                fr.c.date,
                func.coalesce(func.sum(fr.c.quantity), 0).label("total_quantity"),
                _status_count("completed").label("completed_count"),
                _status_count("refunded").label("refunded_count"),
            )
            .group_by(fr.c.date)
            .order_by(fr.c.date)
        )
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc
        return [
            AggregateRecord(
                date=r["date"],
                total_quantity=int(r["total_quantity"]),
                completed_count=int(r["completed_count"]),
                refunded_count=int(r["refunded_count"]),
            ).model_dump()
            for r in rows
        ]

    def run(self) -> StageResult:
        rows = self.compute()
        result = self._merge.merge(
            daily_aggregates, rows, key="date", update_fields=AGGREGATE_UPDATE_FIELDS
        )
        return StageResult(stage_id=self.stage_id, rows_read=len(rows), merge=result)

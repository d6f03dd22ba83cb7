"""Raw records -> deduplicated valid-record set.

Every run rescans the whole raw table, so a rerun after a failed or skipped
tick converges to the same filtered state. Among qualifying raw rows that
share an `id`, the highest `seq` wins.
"""

from __future__ import annotations

from typing import Any, Literal

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from daily_rollup.db.schema import filtered_records, raw_records
from daily_rollup.errors import ComputationError, translate_store_error
from daily_rollup.etl.merge import MergeEngine
from daily_rollup.etl.stage import StageResult
from daily_rollup.models.records import QUALIFYING_STATUSES, RawRecord

FILTER_STAGE_ID = "filter"
FILTER_UPDATE_FIELDS = ("product_id", "quantity", "date", "status")


class FilterStage:
    stage_id = FILTER_STAGE_ID

    def __init__(
        self,
        engine: Engine,
        merge_engine: MergeEngine,
        *,
        malformed_row_policy: Literal["skip", "fail"] = "skip",
    ) -> None:
        self._engine = engine
        self._merge = merge_engine
        self._policy = malformed_row_policy

    def _read_qualifying(self) -> list[dict[str, Any]]:
        stmt = (
            select(raw_records)
            .where(raw_records.c.status.in_(QUALIFYING_STATUSES))
            .order_by(raw_records.c.seq)
        )
        try:
            with self._engine.connect() as conn:
                return [dict(r) for r in conn.execute(stmt).mappings()]
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

    def compute(self) -> tuple[list[dict[str, Any]], list[int]]:
        """Project qualifying raw rows; return (filtered rows, rejected seqs)."""
        latest: dict[int, dict[str, Any]] = {}
        rejected: list[int] = []
        for row in self._read_qualifying():
            try:
                rec = RawRecord.model_validate(row)
            except ValidationError as exc:
                if self._policy == "fail":
                    raise ComputationError(
                        f"malformed raw record seq={row.get('seq')}: {exc.errors()}"
                    ) from exc
                rejected.append(row["seq"])
                continue
            latest[rec.id] = rec.to_filtered()
        return list(latest.values()), rejected

    def run(self) -> StageResult:
        rows, rejected = self.compute()
        message = None
        if rejected:
            message = f"skipped {len(rejected)} malformed raw record(s): seq={rejected[:20]}"
            logger.warning("filter: {}", message)

        result = self._merge.merge(
            filtered_records, rows, key="id", update_fields=FILTER_UPDATE_FIELDS
        )
        return StageResult(
            stage_id=self.stage_id,
            rows_read=len(rows) + len(rejected),
            merge=result,
            rows_rejected=len(rejected),
            message=message,
        )

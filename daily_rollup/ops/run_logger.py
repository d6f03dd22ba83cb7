from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from daily_rollup.db.schema import run_records
from daily_rollup.errors import translate_store_error
from daily_rollup.models.records import RunOutcome, RunRecord
from daily_rollup.utils.time import to_utc_naive, utc_now_naive

MAX_ERROR_MESSAGE = 3800

OUTCOME_RUNNING: RunOutcome = "running"
OUTCOME_SUCCESS: RunOutcome = "success"
OUTCOME_FAILURE: RunOutcome = "failure"


def _truncate(msg: str | None) -> str | None:
    if msg is not None and len(msg) > MAX_ERROR_MESSAGE:
        return msg[:MAX_ERROR_MESSAGE] + "..."
    return msg


class RunLog:
    """Append-only audit log of stage runs.

    A record is written with outcome ``running`` before the stage executes and
    closed exactly once; a closed record (``end_time`` set) is never touched
    again.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def start_run(self, stage_id: str, scheduled_time: datetime | None = None) -> int:
        now = utc_now_naive()
        scheduled = now if scheduled_time is None else to_utc_naive(scheduled_time)
        try:
            with self._engine.begin() as conn:
                res = conn.execute(
                    insert(run_records).values(
                        stage_id=str(stage_id)[:64],
                        scheduled_time=scheduled,
                        start_time=now,
                        outcome=OUTCOME_RUNNING,
                        rows_affected=0,
                    )
                )
                return int(res.inserted_primary_key[0])
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

    def finish_run(
        self,
        run_id: int,
        outcome: RunOutcome,
        rows_affected: int = 0,
        error_message: str | None = None,
    ) -> bool:
        """Close a running record. Returns False if it was already closed."""
        try:
            with self._engine.begin() as conn:
                res = conn.execute(
                    update(run_records)
                    .where(run_records.c.run_id == run_id)
                    .where(run_records.c.end_time.is_(None))
                    .values(
                        end_time=utc_now_naive(),
                        outcome=outcome,
                        rows_affected=int(rows_affected),
                        error_message=_truncate(error_message),
                    )
                )
                return int(getattr(res, "rowcount", 0) or 0) > 0
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

    def fail_stale_running_runs(
        self, stage_id: str | None = None, older_than_minutes: int = 10
    ) -> int:
        cutoff = utc_now_naive() - timedelta(minutes=older_than_minutes)
        stmt = (
            update(run_records)
            .where(run_records.c.outcome == OUTCOME_RUNNING)
            .where(run_records.c.end_time.is_(None))
            .where(run_records.c.start_time < cutoff)
            .values(
                end_time=utc_now_naive(),
                outcome=OUTCOME_FAILURE,
                error_message=(
                    f"Auto-failed stale running run (older than {older_than_minutes} minutes)."
                ),
            )
        )
        if stage_id is not None:
            stmt = stmt.where(run_records.c.stage_id == stage_id)
        try:
            with self._engine.begin() as conn:
                res = conn.execute(stmt)
                return int(getattr(res, "rowcount", 0) or 0)
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

    def list_runs(
        self, stage_id: str | None = None, limit: int = 50, descending: bool = True
    ) -> list[RunRecord]:
        order = (
            (run_records.c.scheduled_time.desc(), run_records.c.run_id.desc())
            if descending
            else (run_records.c.scheduled_time.asc(), run_records.c.run_id.asc())
        )
        stmt = select(run_records).order_by(*order).limit(max(1, int(limit)))
        if stage_id is not None:
            stmt = stmt.where(run_records.c.stage_id == stage_id)
        try:
            with self._engine.connect() as conn:
                return [RunRecord.model_validate(dict(r)) for r in conn.execute(stmt).mappings()]
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

    def latest_run(self, stage_id: str) -> RunRecord | None:
        runs = self.list_runs(stage_id=stage_id, limit=1)
        return runs[0] if runs else None

    def get_run(self, run_id: int) -> RunRecord | None:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(run_records).where(run_records.c.run_id == run_id)
                ).mappings().first()
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc
        return None if row is None else RunRecord.model_validate(dict(row))

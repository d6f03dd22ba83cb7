from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.engine import Engine

from daily_rollup.config import Settings, load_settings
from daily_rollup.db.engine import get_engine
from daily_rollup.db.schema import ensure_schema
from daily_rollup.etl.aggregate_stage import AggregateStage
from daily_rollup.etl.filter_stage import FilterStage
from daily_rollup.etl.merge import MergeEngine
from daily_rollup.jobs.dependency import DependencyScheduler
from daily_rollup.ops.run_logger import RunLog


@dataclass(frozen=True)
class Pipeline:
    settings: Settings
    engine: Engine
    run_log: RunLog
    scheduler: DependencyScheduler

    def close(self) -> None:
        self.scheduler.shutdown(wait=True)
        self.engine.dispose()


def build_pipeline(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    init_schema: bool = True,
) -> Pipeline:
    settings = settings or load_settings()
    engine = engine or get_engine(settings)
    if init_schema:
        ensure_schema(engine)

    run_log = RunLog(engine)
    stale = run_log.fail_stale_running_runs(older_than_minutes=settings.stale_run_minutes)
    if stale:
        logger.warning("Marked {} stale running run(s) as failed", stale)

    merge_engine = MergeEngine(engine)
    stages = [
        FilterStage(
            engine, merge_engine, malformed_row_policy=settings.malformed_row_policy
        ),
        AggregateStage(engine, merge_engine),
    ]
    scheduler = DependencyScheduler(
        stages, run_log, stage_timeout_seconds=settings.stage_timeout_seconds
    )
    return Pipeline(settings=settings, engine=engine, run_log=run_log, scheduler=scheduler)

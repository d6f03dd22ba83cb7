from __future__ import annotations

import argparse
import time

import uvicorn
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from daily_rollup.api.app import create_app
from daily_rollup.config import load_settings
from daily_rollup.db.engine import get_engine
from daily_rollup.db.healthcheck import run_healthcheck
from daily_rollup.db.schema import ensure_schema
from daily_rollup.etl.seed_sample import seed_sample
from daily_rollup.jobs.pipeline import Pipeline, build_pipeline
from daily_rollup.jobs.scheduler import build_timer
from daily_rollup.utils.log import configure_logging


@retry(
    stop=stop_after_attempt(3),
    wait=wait_fixed(1),
    retry=retry_if_exception_type(SQLAlchemyError),
    reraise=True,
)
def _healthcheck_with_retry(engine) -> dict:
    return run_healthcheck(engine)


def _print_runs(pipeline: Pipeline, limit: int) -> None:
    runs = pipeline.run_log.list_runs(limit=limit)
    print(f"last_{len(runs)}_runs:")
    for r in runs:
        print(
            f"- run_id={r.run_id} stage={r.stage_id} outcome={r.outcome} "
            f"scheduled={r.scheduled_time} started={r.start_time} ended={r.end_time} "
            f"rows_affected={r.rows_affected} error={r.error_message}"
        )


def _watch(pipeline: Pipeline, *, serve: bool) -> int:
    settings = pipeline.settings
    timer = build_timer(pipeline.scheduler, settings)
    timer.start()
    logger.info("Timer started: interval={}s", settings.pipeline_interval_seconds)
    try:
        if serve:
            app = create_app(pipeline.scheduler, pipeline.run_log, pipeline.engine)
            uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level="info")
        else:
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Scheduler stopping...")
    finally:
        timer.shutdown(wait=False)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run the incremental rollup pipeline (raw -> filtered -> daily aggregates)."
    )
    parser.add_argument("--init-db", action="store_true", help="Create tables and exit.")
    parser.add_argument(
        "--seed-sample", action="store_true", help="Append sample raw records before running."
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single cycle and exit.")
    mode.add_argument("--watch", action="store_true", help="Tick on an interval forever.")
    mode.add_argument(
        "--serve", action="store_true", help="Like --watch, plus the HTTP control surface."
    )
    mode.add_argument("--runs", type=int, metavar="N", help="Print the last N run records.")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)
    engine = get_engine(settings)

    try:
        _healthcheck_with_retry(engine)
    except SQLAlchemyError as exc:
        logger.error("Store healthcheck failed: {}", exc)
        return 2

    if args.init_db:
        ensure_schema(engine)
        logger.info("Schema ready")
        wants_more = args.seed_sample or args.once or args.watch or args.serve
        if not (wants_more or args.runs is not None):
            return 0

    pipeline = build_pipeline(settings, engine=engine)
    try:
        if args.seed_sample:
            n = seed_sample(engine)
            logger.info("Seeded {} raw record(s)", n)

        if args.runs is not None:
            _print_runs(pipeline, args.runs)
            return 0

        if args.watch or args.serve:
            return _watch(pipeline, serve=args.serve)

        if args.once or not args.seed_sample:
            cycle = pipeline.scheduler.tick()
            for t in cycle.ticks:
                logger.info("{}: {}", t.stage_id, t.as_dict())
            return 0 if cycle.ok else 1
        return 0
    finally:
        pipeline.close()


if __name__ == "__main__":
    raise SystemExit(main())

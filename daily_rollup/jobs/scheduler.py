from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler
from loguru import logger

from daily_rollup.config import Settings
from daily_rollup.jobs.dependency import DependencyScheduler

TICK_JOB_ID = "pipeline_tick"


def _tick_job(pipeline_scheduler: DependencyScheduler) -> None:
    try:
        cycle = pipeline_scheduler.tick()
        if cycle.failed:
            logger.error("Pipeline cycle failed (will retry next interval): {}", cycle.as_dict())
    except Exception:
        logger.exception("Scheduled tick failed")


def build_timer(pipeline_scheduler: DependencyScheduler, settings: Settings) -> BackgroundScheduler:
    timer = BackgroundScheduler(
        job_defaults={
            "max_instances": settings.scheduler_max_instances,
            "coalesce": settings.scheduler_coalesce,
            "misfire_grace_time": settings.scheduler_misfire_grace_seconds,
        }
    )
    timer.add_job(
        _tick_job,
        "interval",
        seconds=settings.pipeline_interval_seconds,
        id=TICK_JOB_ID,
        args=[pipeline_scheduler],
    )
    return timer

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Query
from sqlalchemy.engine import Engine

from daily_rollup.db.healthcheck import run_healthcheck
from daily_rollup.errors import UnknownStage
from daily_rollup.jobs.dependency import DependencyScheduler
from daily_rollup.ops.run_logger import RunLog


def create_app(scheduler: DependencyScheduler, run_log: RunLog, engine: Engine) -> FastAPI:
    app = FastAPI(title="Daily Rollup Pipeline", version="1.0.0")

    def _unknown(stage_id: str) -> HTTPException:
        return HTTPException(status_code=404, detail=f"unknown stage: {stage_id}")

    @app.get("/health")
    def health() -> dict[str, Any]:
        out: dict[str, Any] = {"status": "ok"}
        try:
            run_healthcheck(engine)
            out["store"] = "ok"
        except Exception as exc:
            out["status"] = "degraded"
            out["store"] = "degraded"
            out["store_error"] = str(exc)
        return out

    @app.get("/stages")
    def stages() -> list[dict[str, Any]]:
        return scheduler.status()

    @app.post("/stages/{stage_id}/suspend")
    def suspend(stage_id: str) -> dict[str, Any]:
        try:
            changed = scheduler.suspend(stage_id)
        except UnknownStage:
            raise _unknown(stage_id) from None
        return {"stage_id": stage_id, "suspended": True, "changed": changed}

    @app.post("/stages/{stage_id}/resume")
    def resume(stage_id: str) -> dict[str, Any]:
        try:
            changed = scheduler.resume(stage_id)
        except UnknownStage:
            raise _unknown(stage_id) from None
        return {"stage_id": stage_id, "suspended": False, "changed": changed}

    @app.post("/stages/{stage_id}/tick")
    def tick(stage_id: str) -> dict[str, Any]:
        try:
            cycle = scheduler.tick(stage_id)
        except UnknownStage:
            raise _unknown(stage_id) from None
        return cycle.as_dict()

    @app.get("/runs")
    def runs(
        stage_id: str | None = None, limit: int = Query(default=50, ge=1, le=1000)
    ) -> list[dict[str, Any]]:
        return [r.model_dump(mode="json") for r in run_log.list_runs(stage_id=stage_id, limit=limit)]

    return app

"""Dependency-ordered stage scheduler.

Stages form a linear chain. A tick runs the ticked stage and, on success,
runs each downstream stage in the same control flow. A stage whose upstream
is mid-run blocks until that run has committed before it reads anything.
Stage failures are recorded and reported; they never escape ``tick``.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from daily_rollup.errors import PipelineError, SchedulerSkew, StageTimeout, UnknownStage
from daily_rollup.etl.stage import Stage, StageResult
from daily_rollup.jobs.state import PipelineState, StageStatus
from daily_rollup.ops.run_logger import OUTCOME_FAILURE, OUTCOME_SUCCESS, RunLog
from daily_rollup.utils.time import to_utc_naive, utc_now_naive


class TickOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUSPENDED = "suspended"
    SKEWED = "skewed"


@dataclass(frozen=True)
class StageTick:
    stage_id: str
    outcome: TickOutcome
    run_id: int | None = None
    result: StageResult | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "stage_id": self.stage_id,
            "outcome": self.outcome.value,
            "run_id": self.run_id,
            "error": self.error,
        }
        if self.result is not None:
            out["rows_read"] = self.result.rows_read
            out["rows_affected"] = self.result.rows_affected
            out["rows_rejected"] = self.result.rows_rejected
        return out


@dataclass
class CycleResult:
    trigger: str
    scheduled_time: datetime
    ticks: list[StageTick] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.ticks) and all(
            t.outcome is TickOutcome.SUCCEEDED for t in self.ticks
        )

    @property
    def failed(self) -> bool:
        return any(t.outcome is TickOutcome.FAILED for t in self.ticks)

    def outcome_for(self, stage_id: str) -> TickOutcome | None:
        for t in self.ticks:
            if t.stage_id == stage_id:
                return t.outcome
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger,
            "scheduled_time": self.scheduled_time.isoformat(),
            "ticks": [t.as_dict() for t in self.ticks],
        }


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class DependencyScheduler:
    def __init__(
        self,
        stages: Sequence[Stage],
        run_log: RunLog,
        *,
        stage_timeout_seconds: float = 120.0,
    ) -> None:
        if not stages:
            raise ValueError("at least one stage is required")
        self._stages = {s.stage_id: s for s in stages}
        if len(self._stages) != len(stages):
            raise ValueError("stage ids must be unique")
        self._order = [s.stage_id for s in stages]
        self._run_log = run_log
        self._timeout = float(stage_timeout_seconds)
        self.state = PipelineState(self._order)
        # A timed-out run keeps its worker until it settles.
        self._executor = ThreadPoolExecutor(
            max_workers=2 * len(stages), thread_name_prefix="stage-run"
        )

    @property
    def stage_ids(self) -> list[str]:
        return list(self._order)

    def _index(self, stage_id: str) -> int:
        try:
            return self._order.index(stage_id)
        except ValueError:
            raise UnknownStage(stage_id) from None

    def suspend(self, stage_id: str) -> bool:
        return self.state.suspend(stage_id)

    def resume(self, stage_id: str) -> bool:
        return self.state.resume(stage_id)

    def status(self) -> list[dict[str, Any]]:
        return self.state.snapshot()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def tick(
        self, stage_id: str | None = None, scheduled_time: datetime | None = None
    ) -> CycleResult:
        trigger = stage_id or self._order[0]
        start = self._index(trigger)
        scheduled = utc_now_naive() if scheduled_time is None else to_utc_naive(scheduled_time)
        cycle = CycleResult(trigger=trigger, scheduled_time=scheduled)

        chain = self._order[start:]
        for pos, sid in enumerate(chain):
            tick = self._run_stage(sid, scheduled)
            cycle.ticks.append(tick)
            if tick.outcome is not TickOutcome.SUCCEEDED:
                if pos + 1 < len(chain):
                    logger.info(
                        "Stage '{}' not triggered this cycle: '{}' {}",
                        chain[pos + 1],
                        sid,
                        tick.outcome.value,
                    )
                break
        return cycle

    def _await_upstream(self, stage_id: str) -> bool:
        idx = self._index(stage_id)
        if idx == 0:
            return True
        upstream = self.state.get(self._order[idx - 1])
        if not upstream.run_lock.acquire(timeout=self._timeout):
            return False
        upstream.run_lock.release()
        return True

    def _run_stage(self, stage_id: str, scheduled: datetime) -> StageTick:
        state = self.state.get(stage_id)
        if state.suspended:
            logger.info("Stage '{}' is suspended; ignoring tick ({})", stage_id, scheduled)
            return StageTick(stage_id, TickOutcome.SUSPENDED)

        if not state.run_lock.acquire(blocking=False):
            skew = SchedulerSkew(f"stage '{stage_id}' is still running; tick dropped")
            logger.warning("{} ({})", skew, scheduled)
            return StageTick(stage_id, TickOutcome.SKEWED, error=str(skew))

        handed_off = False
        try:
            if not self._await_upstream(stage_id):
                skew = SchedulerSkew(
                    f"upstream of stage '{stage_id}' still running after "
                    f"{self._timeout}s; tick dropped"
                )
                logger.warning("{} ({})", skew, scheduled)
                return StageTick(stage_id, TickOutcome.SKEWED, error=str(skew))

            try:
                run_id = self._run_log.start_run(stage_id, scheduled)
            except PipelineError as exc:
                logger.error("Could not record start of stage '{}': {}", stage_id, exc)
                return StageTick(stage_id, TickOutcome.FAILED, error=_describe(exc))

            self.state.transition(stage_id, StageStatus.RUNNING)
            state.last_run_id = run_id
            logger.info("Stage '{}' started (run_id={})", stage_id, run_id)
            try:
                future = self._executor.submit(self._execute, stage_id, run_id)
            except RuntimeError as exc:
                self._settle(stage_id, run_id, error=exc)
                return StageTick(stage_id, TickOutcome.FAILED, run_id=run_id, error=_describe(exc))
            handed_off = True
        finally:
            if not handed_off:
                state.run_lock.release()

        return self._await_result(stage_id, run_id, future)

    def _execute(self, stage_id: str, run_id: int) -> StageResult:
        state = self.state.get(stage_id)
        try:
            try:
                result = self._stages[stage_id].run()
            except Exception as exc:
                logger.exception("Stage '{}' failed (run_id={})", stage_id, run_id)
                self._settle(stage_id, run_id, error=exc)
                raise
            self._settle(stage_id, run_id, result=result)
            return result
        finally:
            state.run_lock.release()

    def _settle(
        self,
        stage_id: str,
        run_id: int,
        result: StageResult | None = None,
        error: BaseException | None = None,
    ) -> None:
        status = StageStatus.FAILED if error is not None else StageStatus.SUCCEEDED
        try:
            closed = self._run_log.finish_run(
                run_id,
                OUTCOME_FAILURE if error is not None else OUTCOME_SUCCESS,
                rows_affected=0 if result is None else result.rows_affected,
                error_message=_describe(error) if error is not None else result.message,
            )
            if not closed:
                logger.warning(
                    "Run {} of stage '{}' was already closed; late outcome not recorded",
                    run_id,
                    stage_id,
                )
                status = StageStatus.FAILED
        except Exception as exc:
            logger.error("Could not record outcome of run {} ('{}'): {}", run_id, stage_id, exc)
        finally:
            state = self.state.get(stage_id)
            self.state.transition(stage_id, status)
            state.last_finished_at = utc_now_naive()
            self.state.transition(stage_id, StageStatus.IDLE)

    def _await_result(
        self, stage_id: str, run_id: int, future: Future, recheck: bool = True
    ) -> StageTick:
        try:
            result = future.result(timeout=self._timeout)
        except FutureTimeoutError:
            timeout = StageTimeout(f"stage '{stage_id}' did not finish within {self._timeout}s")
            logger.error("{} (run_id={}); marking run failed", timeout, run_id)
            try:
                closed = self._run_log.finish_run(
                    run_id, OUTCOME_FAILURE, error_message=_describe(timeout)
                )
            except PipelineError as exc:
                logger.error("Could not record timeout of run {}: {}", run_id, exc)
                closed = True
            if not closed and recheck:
                # The run settled between the wait expiring and the update.
                return self._await_result(stage_id, run_id, future, recheck=False)
            return StageTick(stage_id, TickOutcome.FAILED, run_id=run_id, error=_describe(timeout))
        except Exception as exc:
            return StageTick(stage_id, TickOutcome.FAILED, run_id=run_id, error=_describe(exc))

        logger.info(
            "Stage '{}' succeeded (run_id={}, rows_read={}, rows_affected={})",
            stage_id,
            run_id,
            result.rows_read,
            result.rows_affected,
        )
        return StageTick(stage_id, TickOutcome.SUCCEEDED, run_id=run_id, result=result)

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from daily_rollup.errors import PipelineError, UnknownStage


class StageStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_ALLOWED: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.IDLE: frozenset({StageStatus.RUNNING}),
    StageStatus.RUNNING: frozenset({StageStatus.SUCCEEDED, StageStatus.FAILED}),
    StageStatus.SUCCEEDED: frozenset({StageStatus.IDLE}),
    StageStatus.FAILED: frozenset({StageStatus.IDLE}),
}


@dataclass
class StageState:
    stage_id: str
    status: StageStatus = StageStatus.IDLE
    suspended: bool = False
    last_outcome: StageStatus | None = None
    last_run_id: int | None = None
    last_finished_at: datetime | None = None
    # Held for the whole lifetime of a run, including past a tick timeout.
    run_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def as_dict(self) -> dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "status": self.status.value,
            "suspended": self.suspended,
            "last_outcome": None if self.last_outcome is None else self.last_outcome.value,
            "last_run_id": self.last_run_id,
            "last_finished_at": self.last_finished_at,
        }


class PipelineState:
    """Status and suspend flags for every stage of one pipeline instance."""

    def __init__(self, stage_ids: Iterable[str]) -> None:
        self._stages = {sid: StageState(stage_id=sid) for sid in stage_ids}
        self._guard = threading.Lock()

    @property
    def stage_ids(self) -> list[str]:
        return list(self._stages)

    def get(self, stage_id: str) -> StageState:
        try:
            return self._stages[stage_id]
        except KeyError:
            raise UnknownStage(stage_id) from None

    def transition(self, stage_id: str, new_status: StageStatus) -> None:
        state = self.get(stage_id)
        with self._guard:
            if new_status not in _ALLOWED[state.status]:
                raise PipelineError(
                    f"illegal transition for stage '{stage_id}': "
                    f"{state.status.value} -> {new_status.value}"
                )
            state.status = new_status
            if new_status in (StageStatus.SUCCEEDED, StageStatus.FAILED):
                state.last_outcome = new_status

    def suspend(self, stage_id: str) -> bool:
        state = self.get(stage_id)
        with self._guard:
            changed = not state.suspended
            state.suspended = True
        if changed:
            logger.info("Stage '{}' suspended", stage_id)
        return changed

    def resume(self, stage_id: str) -> bool:
        state = self.get(stage_id)
        with self._guard:
            changed = state.suspended
            state.suspended = False
        if changed:
            logger.info("Stage '{}' resumed", stage_id)
        return changed

    def is_suspended(self, stage_id: str) -> bool:
        return self.get(stage_id).suspended

    def snapshot(self) -> list[dict[str, Any]]:
        with self._guard:
            return [s.as_dict() for s in self._stages.values()]

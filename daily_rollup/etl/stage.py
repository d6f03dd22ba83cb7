from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from daily_rollup.etl.merge import MergeResult


@dataclass(frozen=True)
class StageResult:
    stage_id: str
    rows_read: int
    merge: MergeResult = field(default_factory=MergeResult)
    rows_rejected: int = 0
    message: str | None = None

    @property
    def rows_affected(self) -> int:
        return self.merge.rows_affected


class Stage(Protocol):
    stage_id: str

    def run(self) -> StageResult: ...

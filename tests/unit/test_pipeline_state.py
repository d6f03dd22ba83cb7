"""
Unit tests for the per-stage state machine and suspend flags.
"""
import pytest

from daily_rollup.errors import PipelineError, UnknownStage
from daily_rollup.jobs.state import PipelineState, StageStatus


@pytest.mark.unit
class TestPipelineState:
    def test_full_lifecycle(self):
        state = PipelineState(["filter", "aggregate"])

        state.transition("filter", StageStatus.RUNNING)
        state.transition("filter", StageStatus.SUCCEEDED)
        state.transition("filter", StageStatus.IDLE)

        s = state.get("filter")
        assert s.status is StageStatus.IDLE
        assert s.last_outcome is StageStatus.SUCCEEDED

    @pytest.mark.parametrize(
        "path",
        [
            [StageStatus.SUCCEEDED],
            [StageStatus.RUNNING, StageStatus.IDLE],
            [StageStatus.RUNNING, StageStatus.RUNNING],
        ],
    )
    def test_illegal_transitions_are_rejected(self, path):
        state = PipelineState(["filter"])

        with pytest.raises(PipelineError):
            for status in path:
                state.transition("filter", status)

    def test_suspend_and_resume_are_idempotent(self):
        state = PipelineState(["filter"])

        assert state.suspend("filter") is True
        assert state.suspend("filter") is False
        assert state.is_suspended("filter")
        assert state.resume("filter") is True
        assert state.resume("filter") is False
        assert not state.is_suspended("filter")

    def test_unknown_stage(self):
        state = PipelineState(["filter"])

        with pytest.raises(UnknownStage):
            state.suspend("nope")
        with pytest.raises(KeyError):
            state.get("nope")

    def test_snapshot(self):
        state = PipelineState(["filter", "aggregate"])
        state.suspend("aggregate")

        snap = {s["stage_id"]: s for s in state.snapshot()}

        assert snap["filter"]["status"] == "idle"
        assert snap["aggregate"]["suspended"] is True
        assert snap["filter"]["last_outcome"] is None

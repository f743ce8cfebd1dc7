"""
Tests for the TDD phase machine guards and the subtask sequencer.

Run with: pytest tests/test_tdd_phase.py -v
"""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from tdd_workflow_server import sequencer, tdd_phase
from tdd_workflow_server.errors import TransitionError, ValidationError
from tdd_workflow_server.tdd_phase import (
    RED_COMPLETE,
    GREEN_COMPLETE,
    COMMIT_COMPLETE,
    GREEN_ATTEMPT_FAILED,
)
from tdd_workflow_server.workflow_state import create_initial_state


def make_state(count: int = 2, tdd: str = "RED", max_attempts: int = 3) -> dict:
    state = create_initial_state({
        "taskId": "3",
        "subtasks": [{"id": f"3.{i + 1}", "title": f"Step {i + 1}"} for i in range(count)],
    }, max_attempts)
    state["context"]["currentTDDPhase"] = tdd
    return state


def results(failed: int, passed: int = 1) -> dict:
    return {"testResults": {"failed": failed, "passed": passed}}


# ============================================================================
# Guards
# ============================================================================

class TestCheck:
    """check() is a pure guard returning (error class, reason)."""

    def test_accepts_red_with_failures(self):
        assert tdd_phase.check(make_state(), RED_COMPLETE, results(1)) == (None, "")

    def test_rejects_red_without_failures(self):
        error_cls, reason = tdd_phase.check(make_state(), RED_COMPLETE, results(0))
        assert error_cls is ValidationError
        assert reason == "RED phase must have at least one failing test"

    def test_rejects_green_with_failures(self):
        error_cls, reason = tdd_phase.check(make_state(tdd="GREEN"), GREEN_COMPLETE, results(4))
        assert error_cls is ValidationError
        assert "(got 4)" in reason

    def test_commit_needs_no_results(self):
        assert tdd_phase.check(make_state(tdd="COMMIT"), COMMIT_COMPLETE) == (None, "")

    @pytest.mark.parametrize("payload", [
        None,
        {},
        {"testResults": None},
        {"testResults": {"failed": 1}},
        {"testResults": {"failed": "1", "passed": 0}},
        {"testResults": {"failed": 1.5, "passed": 0}},
        [{"failed": 1, "passed": 0}],
        "testResults",
    ])
    def test_malformed_results(self, payload):
        error_cls, reason = tdd_phase.check(make_state(), RED_COMPLETE, payload)
        assert error_cls is ValidationError
        assert reason.startswith("Test results required")

    def test_wrong_phase_checked_before_results(self):
        error_cls, reason = tdd_phase.check(make_state(), GREEN_COMPLETE, None)
        assert error_cls is TransitionError
        assert reason == "GREEN_COMPLETE is not valid in RED phase"

    def test_check_does_not_mutate(self):
        state = make_state()
        snapshot = repr(state)
        tdd_phase.check(state, RED_COMPLETE, results(0))
        tdd_phase.check(state, COMMIT_COMPLETE)
        assert repr(state) == snapshot

    def test_hint_names_current_phase(self):
        assert "RED" in tdd_phase.hint_for(make_state(), TransitionError)
        assert tdd_phase.hint_for(make_state(), ValidationError) is None


# ============================================================================
# Apply
# ============================================================================

class TestApply:
    """apply() mutates the working state and returns pending events."""

    def test_red_to_green(self):
        state = make_state()
        events = tdd_phase.apply(state, RED_COMPLETE, results(2, 0))

        assert state["context"]["currentTDDPhase"] == "GREEN"
        assert state["context"]["lastTestResults"] == {"failed": 2, "passed": 0}
        assert [e["type"] for e in events] == ["tdd:green:started"]

    def test_green_to_commit(self):
        state = make_state(tdd="GREEN")
        events = tdd_phase.apply(state, GREEN_COMPLETE, results(0, 3))

        assert state["context"]["currentTDDPhase"] == "COMMIT"
        assert events[0]["type"] == "tdd:commit:started"
        assert events[0]["subtaskId"] == "3.1"

    def test_commit_advances(self):
        state = make_state(tdd="COMMIT")
        events = tdd_phase.apply(state, COMMIT_COMPLETE)

        assert state["context"]["currentSubtaskIndex"] == 1
        assert state["context"]["currentTDDPhase"] == "RED"
        assert state["context"]["subtasks"][0]["status"] == "completed"
        assert [e["type"] for e in events] == [
            "subtask:completed", "subtask:started", "tdd:red:started"
        ]

    def test_failed_attempt_keeps_phase(self):
        state = make_state(tdd="GREEN")
        tdd_phase.apply(state, GREEN_ATTEMPT_FAILED, results(1))

        assert state["context"]["currentTDDPhase"] == "GREEN"
        assert state["context"]["subtasks"][0]["attempts"] == 1


# ============================================================================
# Sequencer
# ============================================================================

class TestSequencer:
    """Outer iteration over subtasks."""

    def test_current_subtask(self):
        state = make_state()
        assert sequencer.get_current_subtask(state)["id"] == "3.1"
        assert sequencer.is_last_subtask(state) is False

    def test_advance_last_subtask_completes(self):
        state = make_state(count=1, tdd="COMMIT")
        sequencer.complete_current(state)
        events = sequencer.advance(state)

        assert state["phase"] == "COMPLETE"
        assert state["context"]["currentSubtaskIndex"] == 1
        assert sequencer.get_current_subtask(state) is None
        assert [e["type"] for e in events] == [
            "subtask:completed", "phase:exited", "phase:entered"
        ]

    def test_advance_keeps_completed_status_of_next(self):
        state = make_state(count=2, tdd="COMMIT")
        state["context"]["subtasks"][1]["status"] = "completed"
        sequencer.advance(state)
        assert state["context"]["subtasks"][1]["status"] == "completed"

    def test_can_proceed_respects_budget(self):
        state = make_state(tdd="GREEN", max_attempts=1)
        assert sequencer.can_proceed(state) is True

        events = sequencer.record_failed_attempt(state, failed=2)

        assert sequencer.can_proceed(state) is False
        assert sequencer.is_blocked(state) is True
        assert events[0]["type"] == "subtask:blocked"
        assert "failed with 2 failing test(s)" in state["context"]["errors"][0]["message"]

    def test_force_continue_check(self):
        state = make_state(tdd="GREEN", max_attempts=1)
        assert sequencer.check_force_continue(state)[0] is TransitionError

        sequencer.record_failed_attempt(state, failed=1)
        assert sequencer.check_force_continue(state) == (None, "")

        events = sequencer.force_continue(state)
        assert events[0]["data"] == {"title": "Step 1", "forced": True, "previousAttempts": 1}
        assert sequencer.can_proceed(state) is True

    def test_abort(self):
        state = make_state()
        sequencer.abort(state, "stop")

        assert state["phase"] == "ABORTED"
        assert state["context"]["errors"][-1]["message"] == "Workflow aborted: stop"
        assert sequencer.check_abort(state)[0] is TransitionError

"""
TDD Phase Machine

Inner state machine for one subtask: RED -> GREEN -> COMMIT.

    RED_COMPLETE(testResults)          RED   -> GREEN   (needs failed > 0)
    GREEN_COMPLETE(testResults)        GREEN -> COMMIT  (needs failed == 0)
    COMMIT_COMPLETE()                  COMMIT -> next subtask (via the sequencer)
    GREEN_ATTEMPT_FAILED(testResults)  GREEN -> GREEN   (charges the attempt budget)

`check` is a pure guard returning a tagged result; `apply` mutates and must only
be called after `check` accepted the event.
"""

from typing import Any, Optional

from . import sequencer
from .errors import TransitionError, ValidationError
from .workflow_state import SUBTASK_LOOP, RED, GREEN, COMMIT, is_count


RED_COMPLETE = "RED_COMPLETE"
GREEN_COMPLETE = "GREEN_COMPLETE"
COMMIT_COMPLETE = "COMMIT_COMPLETE"
GREEN_ATTEMPT_FAILED = "GREEN_ATTEMPT_FAILED"

# event -> TDD phase it completes
EVENT_PHASES = {
    RED_COMPLETE: RED,
    GREEN_COMPLETE: GREEN,
    COMMIT_COMPLETE: COMMIT,
    GREEN_ATTEMPT_FAILED: GREEN,
}

NEXT_PHASE = {
    RED: GREEN,
    GREEN: COMMIT,
}

PHASE_HINTS = {
    RED: "Write a failing test for the current subtask and complete the RED phase first",
    GREEN: "Make the failing tests pass and complete the GREEN phase first",
    COMMIT: "Commit the current subtask before starting new work",
}


def read_test_results(payload: Optional[dict]) -> tuple[Optional[dict], str]:
    if payload is not None and not isinstance(payload, dict):
        return None, "Test results required: payload must be an object"

    results = (payload or {}).get("testResults")
    if not isinstance(results, dict):
        return None, "Test results required: payload must include testResults"

    for key in ("failed", "passed"):
        if not is_count(results.get(key), 0):
            return None, f"Test results required: testResults.{key} must be a non-negative integer"

    return results, ""


def _check_results(event_type: str, payload: Optional[dict]) -> tuple[Optional[type], str]:
    results, reason = read_test_results(payload)
    if results is None:
        return ValidationError, reason

    failed = results["failed"]
    if event_type == RED_COMPLETE and failed == 0:
        return ValidationError, "RED phase must have at least one failing test"
    if event_type == GREEN_COMPLETE and failed > 0:
        return ValidationError, f"GREEN phase must have zero failures (got {failed})"
    if event_type == GREEN_ATTEMPT_FAILED and failed == 0:
        return ValidationError, "A failed GREEN attempt must report at least one failing test"

    return None, ""


def check(state: dict, event_type: str, payload: Optional[dict] = None) -> tuple[Optional[type], str]:
    """Guard a TDD event against the current state.

    Returns:
        (None, "") when the event is accepted, otherwise
        (error class, reason) describing the rejection.
    """
    if event_type not in EVENT_PHASES:
        return TransitionError, f"Unknown TDD event: {event_type}"

    phase = state["phase"]
    if phase != SUBTASK_LOOP:
        return TransitionError, f"{event_type} is not valid: workflow is {phase}"

    if sequencer.is_blocked(state):
        subtask = sequencer.get_current_subtask(state)
        return TransitionError, (
            f"Subtask {subtask['id']} is blocked after {subtask['attempts']} attempts; "
            f"FORCE_CONTINUE or ABORT required"
        )

    current = state["context"]["currentTDDPhase"]
    if EVENT_PHASES[event_type] != current:
        return TransitionError, f"{event_type} is not valid in {current} phase"

    if event_type == COMMIT_COMPLETE:
        return None, ""

    return _check_results(event_type, payload)


def hint_for(state: dict, error_cls: type) -> Optional[str]:
    if error_cls is TransitionError and state["phase"] == SUBTASK_LOOP and not sequencer.is_blocked(state):
        return PHASE_HINTS.get(state["context"]["currentTDDPhase"])
    return None


def apply(state: dict, event_type: str, payload: Optional[dict] = None) -> list[dict]:
    context = state["context"]
    subtask = sequencer.get_current_subtask(state)

    if event_type == COMMIT_COMPLETE:
        sequencer.complete_current(state)
        return sequencer.advance(state)

    results: dict[str, Any] = dict(payload["testResults"])

    if event_type == GREEN_ATTEMPT_FAILED:
        context["lastTestResults"] = results
        return sequencer.record_failed_attempt(state, results["failed"])

    context["lastTestResults"] = results
    next_phase = NEXT_PHASE[context["currentTDDPhase"]]
    context["currentTDDPhase"] = next_phase
    return [sequencer.event(f"tdd:{next_phase.lower()}:started", subtask["id"])]

"""
Subtask Sequencer

Outer iteration over the ordered subtask list. Advances after a commit,
detects overall completion, enforces each subtask's attempt budget and
handles the FORCE_CONTINUE and ABORT escalations.

All mutating helpers operate in place on a working copy of the state handed to
them by the orchestrator, and return the events to emit once the change has
been accepted.
"""

from typing import Any, Optional

from .errors import TransitionError
from .workflow_state import (
    SUBTASK_LOOP,
    COMPLETE,
    ABORTED,
    RED,
    STATUS_PENDING,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_BLOCKED,
    error_record,
)


FORCE_CONTINUE = "FORCE_CONTINUE"
ABORT = "ABORT"


def event(event_type: str, subtask_id: Optional[str] = None, **data: Any) -> dict:
    return {"type": event_type, "subtaskId": subtask_id, "data": data}


def get_current_subtask(state: dict) -> Optional[dict]:
    if state["phase"] == COMPLETE:
        return None
    context = state["context"]
    index = context["currentSubtaskIndex"]
    if index >= len(context["subtasks"]):
        return None
    return context["subtasks"][index]


def is_last_subtask(state: dict) -> bool:
    context = state["context"]
    return context["currentSubtaskIndex"] == len(context["subtasks"]) - 1


def can_proceed(state: dict) -> bool:
    if state["phase"] != SUBTASK_LOOP:
        return False
    subtask = get_current_subtask(state)
    if subtask is None:
        return False
    return subtask["attempts"] < subtask["maxAttempts"]


def is_blocked(state: dict) -> bool:
    subtask = get_current_subtask(state)
    return subtask is not None and subtask["status"] == STATUS_BLOCKED


def advance(state: dict) -> list[dict]:
    """Move past a committed subtask.

    On the last subtask the workflow becomes COMPLETE and the index is left at
    len(subtasks). Otherwise the next subtask starts in RED.
    """
    context = state["context"]
    subtasks = context["subtasks"]
    finished = subtasks[context["currentSubtaskIndex"]]
    events = [event("subtask:completed", finished["id"], title=finished["title"])]

    if is_last_subtask(state):
        context["currentSubtaskIndex"] = len(subtasks)
        state["phase"] = COMPLETE
        events.append(event("phase:exited", phase=SUBTASK_LOOP))
        events.append(event("phase:entered", phase=COMPLETE))
        return events

    context["currentSubtaskIndex"] += 1
    context["currentTDDPhase"] = RED
    upcoming = subtasks[context["currentSubtaskIndex"]]
    if upcoming["status"] == STATUS_PENDING:
        upcoming["status"] = STATUS_IN_PROGRESS

    events.append(event("subtask:started", upcoming["id"], title=upcoming["title"]))
    events.append(event("tdd:red:started", upcoming["id"]))
    return events


def complete_current(state: dict) -> None:
    subtask = get_current_subtask(state)
    subtask["status"] = STATUS_COMPLETED


def record_failed_attempt(state: dict, failed: int) -> list[dict]:
    """Charge one GREEN attempt to the current subtask.

    Once attempts reach maxAttempts the subtask is blocked; nothing but an
    explicit force-continue (or abort) lets the workflow move on.
    """
    context = state["context"]
    subtask = get_current_subtask(state)
    subtask["attempts"] += 1

    message = (
        f"GREEN attempt {subtask['attempts']}/{subtask['maxAttempts']} "
        f"for subtask {subtask['id']} failed with {failed} failing test(s)"
    )
    context["errors"].append(error_record(message))

    events = []
    if subtask["attempts"] >= subtask["maxAttempts"]:
        subtask["status"] = STATUS_BLOCKED
        events.append(event(
            "subtask:blocked",
            subtask["id"],
            attempts=subtask["attempts"],
            maxAttempts=subtask["maxAttempts"],
        ))
    return events


def check_force_continue(state: dict) -> tuple[Optional[type], str]:
    if state["phase"] != SUBTASK_LOOP:
        return TransitionError, f"{FORCE_CONTINUE} is not valid: workflow is {state['phase']}"
    if not is_blocked(state):
        subtask = get_current_subtask(state)
        return TransitionError, f"{FORCE_CONTINUE} is not valid: subtask {subtask['id']} is not blocked"
    return None, ""


def check_abort(state: dict) -> tuple[Optional[type], str]:
    if state["phase"] != SUBTASK_LOOP:
        return TransitionError, f"{ABORT} is not valid: workflow is {state['phase']}"
    return None, ""


def abort(state: dict, reason: Optional[str] = None) -> list[dict]:
    context = state["context"]
    message = "Workflow aborted"
    if reason:
        message = f"Workflow aborted: {reason}"
    context["errors"].append(error_record(message))
    state["phase"] = ABORTED
    return [
        event("phase:exited", phase=SUBTASK_LOOP),
        event("phase:entered", phase=ABORTED, reason=reason),
    ]


def force_continue(state: dict) -> list[dict]:
    subtask = get_current_subtask(state)
    previous_attempts = subtask["attempts"]
    subtask["attempts"] = 0
    subtask["status"] = STATUS_IN_PROGRESS
    return [event("subtask:started", subtask["id"], title=subtask["title"],
                  forced=True, previousAttempts=previous_attempts)]

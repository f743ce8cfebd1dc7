"""
Workflow State

The canonical, serializable snapshot of TDD workflow progress. State is a plain
dict shaped exactly like the persisted JSON document:

    {
      "phase": "SUBTASK_LOOP" | "COMPLETE" | "ABORTED",
      "context": {
        "taskId", "branchName", "tag", "subtasks", "currentSubtaskIndex",
        "currentTDDPhase", "errors", "metadata"
      }
    }

This module builds the initial state from a caller-supplied context and performs
the structural checks used before resuming from a snapshot.
"""

import copy
from datetime import datetime
from typing import Any

from .errors import ConfigError


SUBTASK_LOOP = "SUBTASK_LOOP"
COMPLETE = "COMPLETE"
ABORTED = "ABORTED"

WORKFLOW_PHASES = [SUBTASK_LOOP, COMPLETE, ABORTED]

RED = "RED"
GREEN = "GREEN"
COMMIT = "COMMIT"

TDD_PHASES = [RED, GREEN, COMMIT]

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_BLOCKED = "blocked"

SUBTASK_STATUSES = [
    STATUS_PENDING,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_BLOCKED,
]

DEFAULT_MAX_ATTEMPTS = 3

CONTEXT_FIELDS = [
    "taskId",
    "branchName",
    "tag",
    "subtasks",
    "currentSubtaskIndex",
    "currentTDDPhase",
    "errors",
    "metadata",
]

SUBTASK_FIELDS = ["id", "title", "status", "attempts", "maxAttempts"]


def is_count(value: Any, minimum: int = 0) -> bool:
    # bool is an int subclass; a count of True is never intended
    return isinstance(value, int) and not isinstance(value, bool) and value >= minimum


def error_record(message: str) -> dict:
    return {"message": message, "at": datetime.now().isoformat()}


def _normalize_subtask(raw: Any, position: int, default_max_attempts: int) -> dict:
    if not isinstance(raw, dict):
        raise ConfigError(f"Subtask at position {position} is not an object")

    subtask_id = raw.get("id")
    if subtask_id is None or str(subtask_id).strip() == "":
        raise ConfigError(f"Subtask at position {position} has no id")

    title = raw.get("title", "")
    if not isinstance(title, str):
        raise ConfigError(f"Subtask {subtask_id} has a non-string title")

    status = raw.get("status", STATUS_PENDING)
    if status not in SUBTASK_STATUSES:
        raise ConfigError(
            f"Subtask {subtask_id} has invalid status '{status}'. "
            f"Expected one of: {', '.join(SUBTASK_STATUSES)}"
        )

    attempts = raw.get("attempts", 0)
    if not is_count(attempts, 0):
        raise ConfigError(f"Subtask {subtask_id} attempts must be an integer >= 0")

    max_attempts = raw.get("maxAttempts", default_max_attempts)
    if not is_count(max_attempts, 1):
        raise ConfigError(f"Subtask {subtask_id} maxAttempts must be an integer >= 1")

    if attempts >= max_attempts and status != STATUS_BLOCKED:
        if status == STATUS_COMPLETED:
            raise ConfigError(
                f"Subtask {subtask_id} is completed but used {attempts}/{max_attempts} attempts"
            )
        status = STATUS_BLOCKED

    return {
        "id": str(subtask_id),
        "title": title,
        "status": status,
        "attempts": attempts,
        "maxAttempts": max_attempts,
    }


def create_initial_state(
    context: dict,
    default_max_attempts: int = DEFAULT_MAX_ATTEMPTS
) -> dict:
    """Validate a caller-supplied context and build the starting WorkflowState.

    Raises ConfigError before anything is built, so a bad context never yields a
    partial state.
    """
    if not isinstance(context, dict):
        raise ConfigError("Workflow context must be an object")

    task_id = context.get("taskId")
    if task_id is None or str(task_id).strip() == "":
        raise ConfigError("Workflow context has no taskId")

    raw_subtasks = context.get("subtasks")
    if not isinstance(raw_subtasks, list) or not raw_subtasks:
        raise ConfigError(
            f"Task {task_id} has no subtasks",
            hint="Expand the task into subtasks before starting a TDD workflow"
        )

    subtasks = [
        _normalize_subtask(raw, i, default_max_attempts)
        for i, raw in enumerate(raw_subtasks)
    ]

    seen = set()
    for subtask in subtasks:
        if subtask["id"] in seen:
            raise ConfigError(f"Duplicate subtask id: {subtask['id']}")
        seen.add(subtask["id"])

    metadata = copy.deepcopy(context.get("metadata") or {})
    if not isinstance(metadata, dict):
        raise ConfigError("Workflow metadata must be an object")
    metadata.setdefault("startedAt", datetime.now().isoformat())
    metadata.setdefault("taskTitle", "")

    errors = copy.deepcopy(context.get("errors") or [])
    if not isinstance(errors, list):
        raise ConfigError("Workflow errors must be a list")

    if subtasks[0]["status"] == STATUS_PENDING:
        subtasks[0]["status"] = STATUS_IN_PROGRESS

    return {
        "phase": SUBTASK_LOOP,
        "context": {
            "taskId": str(task_id),
            "branchName": context.get("branchName") or "",
            "tag": context.get("tag") or "",
            "subtasks": subtasks,
            "currentSubtaskIndex": 0,
            "currentTDDPhase": RED,
            "errors": errors,
            "metadata": metadata,
        },
    }


def _check_subtask(subtask: Any, position: int) -> tuple[bool, str]:
    if not isinstance(subtask, dict):
        return False, f"Subtask at position {position} is not an object"

    missing = [f for f in SUBTASK_FIELDS if f not in subtask]
    if missing:
        return False, f"Subtask at position {position} is missing fields: {', '.join(missing)}"

    if not isinstance(subtask["id"], str) or not isinstance(subtask["title"], str):
        return False, f"Subtask at position {position} has a non-string id or title"

    if not subtask["id"].strip():
        return False, f"Subtask at position {position} has no id"

    if subtask["status"] not in SUBTASK_STATUSES:
        return False, f"Subtask {subtask['id']} has unknown status '{subtask['status']}'"

    if not is_count(subtask["attempts"], 0):
        return False, f"Subtask {subtask['id']} has invalid attempts"

    if not is_count(subtask["maxAttempts"], 1):
        return False, f"Subtask {subtask['id']} has invalid maxAttempts"

    if subtask["attempts"] >= subtask["maxAttempts"] and subtask["status"] != STATUS_BLOCKED:
        return False, (
            f"Subtask {subtask['id']} used {subtask['attempts']}/{subtask['maxAttempts']} "
            f"attempts but is not blocked"
        )

    return True, ""


def check_snapshot(snapshot: Any) -> tuple[bool, str]:
    """Structural check of a persisted snapshot.

    Returns:
        Tuple of (is_resumable, reason)
    """
    if not isinstance(snapshot, dict):
        return False, "Snapshot is not an object"

    phase = snapshot.get("phase")
    if phase not in WORKFLOW_PHASES:
        return False, f"Unknown workflow phase: {phase!r}"

    context = snapshot.get("context")
    if not isinstance(context, dict):
        return False, "Snapshot has no context"

    missing = [f for f in CONTEXT_FIELDS if f not in context]
    if missing:
        return False, f"Context is missing fields: {', '.join(missing)}"

    for field in ("taskId", "branchName", "tag"):
        if not isinstance(context[field], str):
            return False, f"Context field {field} must be a string"

    if not context["taskId"].strip():
        return False, "Context has no taskId"

    subtasks = context["subtasks"]
    if not isinstance(subtasks, list) or not subtasks:
        return False, "Context has no subtasks"

    seen = set()
    for i, subtask in enumerate(subtasks):
        ok, reason = _check_subtask(subtask, i)
        if not ok:
            return False, reason
        if subtask["id"] in seen:
            return False, f"Duplicate subtask id: {subtask['id']}"
        seen.add(subtask["id"])

    index = context["currentSubtaskIndex"]
    if not is_count(index, 0) or index > len(subtasks):
        return False, f"currentSubtaskIndex {index!r} is out of bounds [0, {len(subtasks)}]"

    if (index == len(subtasks)) != (phase == COMPLETE):
        return False, f"currentSubtaskIndex {index} is inconsistent with phase {phase}"

    if context["currentTDDPhase"] not in TDD_PHASES:
        return False, f"Unknown TDD phase: {context['currentTDDPhase']!r}"

    if not isinstance(context["errors"], list):
        return False, "Context errors must be a list"

    if not isinstance(context["metadata"], dict):
        return False, "Context metadata must be an object"

    return True, "Snapshot is resumable"


def can_resume_from_state(snapshot: Any) -> bool:
    ok, _ = check_snapshot(snapshot)
    return ok

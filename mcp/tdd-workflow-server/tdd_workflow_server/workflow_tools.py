"""
Caller-facing workflow operations.

Each operation takes the snapshot lock, loads the checkpoint, rebuilds a
WorkflowOrchestrator from it, registers the snapshot store as the auto-persist
callback, performs at most one transition and returns a JSON-serializable dict.

Workflow errors come back as
    {"success": False, "error": ..., "error_type": ..., "hint": ...}
Anything else (collaborator failures, lock timeouts) propagates to the caller.
"""

import logging
import re
from pathlib import Path
from typing import Any, Optional

from .collaborators import MessageGenerator, TaskSource, VersionControl
from .config_tools import config_get_effective
from .errors import (
    NotFoundError,
    StateCorruptionError,
    TransitionError,
    ValidationError,
    WorkflowError,
)
from .orchestrator import WorkflowOrchestrator
from .persistence import SnapshotStore
from .sequencer import ABORT, FORCE_CONTINUE
from .tdd_phase import (
    COMMIT_COMPLETE,
    GREEN_ATTEMPT_FAILED,
    GREEN_COMPLETE,
    PHASE_HINTS,
    RED_COMPLETE,
)
from .workflow_state import (
    ABORTED,
    COMMIT,
    COMPLETE,
    GREEN,
    RED,
    SUBTASK_LOOP,
    check_snapshot,
)


logger = logging.getLogger(__name__)

NEXT_ACTIONS = {
    RED: "write_failing_test",
    GREEN: "implement",
    COMMIT: "commit",
}

ACTION_MESSAGES = {
    RED: "Write a failing test for subtask {id}: {title}",
    GREEN: "Implement subtask {id} until all tests pass: {title}",
    COMMIT: "Commit the changes for subtask {id}: {title}",
}

COMPLETION_EVENTS = {
    RED: RED_COMPLETE,
    GREEN: GREEN_COMPLETE,
}

# task source statuses that are skipped when seeding subtasks
DONE_STATUSES = ["done", "completed", "cancelled"]


# ============================================================================
# Helpers
# ============================================================================

def _slugify(text: str) -> str:
    """Convert text to git-branch-safe slug."""
    text = text.lower().strip()
    text = re.sub(r'[^a-z0-9\s_-]', '', text)
    text = re.sub(r'[\s_]+', '-', text)
    text = re.sub(r'-+', '-', text)
    return text.strip('-')


def _generate_branch_name(task_id: str, task_title: Optional[str], prefix: str) -> str:
    """Branch from the task title when there is one, else from the task id."""
    task_slug = _slugify(str(task_id)) or "task"
    if task_title:
        slug = _slugify(task_title)[:50].rstrip("-")
        if slug:
            return f"{prefix}task-{task_slug}-{slug}"
    return f"{prefix}task-{task_slug}"


def _subtasks_from_task(task: dict) -> list[dict]:
    subtasks = []
    for raw in task.get("subtasks") or []:
        if raw.get("status") in DONE_STATUSES:
            continue
        subtasks.append({
            "id": str(raw.get("id", "")),
            "title": raw.get("title") or "",
        })
    return subtasks


def _error_result(error: WorkflowError) -> dict[str, Any]:
    return {
        "success": False,
        "error": str(error),
        "error_type": type(error).__name__,
        "hint": error.hint,
    }


def _open_store(project_dir: Optional[str]) -> tuple[dict, SnapshotStore]:
    config = config_get_effective(project_dir)["config"]
    base = Path(project_dir) if project_dir else Path.cwd()
    store = SnapshotStore(
        base / config["state_file"],
        history_file=base / config["history_file"],
        lock_timeout=config["lock_timeout"],
    )
    return config, store


def _load_orchestrator(store: SnapshotStore, config: dict) -> WorkflowOrchestrator:
    """Rebuild an orchestrator from the checkpoint. Caller holds the lock."""
    snapshot = store.load()
    if not WorkflowOrchestrator.can_resume_from_state(snapshot):
        _, reason = check_snapshot(snapshot)
        raise StateCorruptionError(f"Cannot resume workflow from {store.state_file}: {reason}")

    orchestrator = WorkflowOrchestrator(snapshot["context"], config["max_attempts"])
    orchestrator.restore_state(snapshot)
    orchestrator.enable_auto_persist(store.save)
    return orchestrator


def _next_action(orchestrator: WorkflowOrchestrator) -> dict[str, Any]:
    phase = orchestrator.get_current_phase()
    if phase == COMPLETE:
        return {"action": "done", "message": "All subtasks are complete"}
    if phase == ABORTED:
        return {"action": "aborted", "message": "Workflow was aborted; start a new one to continue"}

    subtask = orchestrator.get_current_subtask()
    if not orchestrator.can_proceed():
        return {
            "action": "force_continue_or_abort",
            "message": (
                f"Subtask {subtask['id']} used {subtask['attempts']}/{subtask['maxAttempts']} "
                f"GREEN attempts; force-continue to retry or abort the workflow"
            ),
        }

    tdd_phase = orchestrator.get_current_tdd_phase()
    return {
        "action": NEXT_ACTIONS[tdd_phase],
        "message": ACTION_MESSAGES[tdd_phase].format(**subtask),
    }


def _summary(orchestrator: WorkflowOrchestrator) -> dict[str, Any]:
    context = orchestrator.get_context()
    return {
        "task_id": context["taskId"],
        "branch_name": context["branchName"],
        "phase": orchestrator.get_current_phase(),
        "tdd_phase": orchestrator.get_current_tdd_phase(),
        "current_subtask": orchestrator.get_current_subtask(),
        "progress": orchestrator.get_progress(),
        "next_action": _next_action(orchestrator),
    }


def _send(event_type: str, payload: Optional[dict], project_dir: Optional[str]) -> dict[str, Any]:
    config, store = _open_store(project_dir)
    try:
        with store.lock():
            orchestrator = _load_orchestrator(store, config)
            before = orchestrator.get_current_subtask()
            orchestrator.transition(event_type, payload)
    except WorkflowError as e:
        logger.info("%s rejected: %s", event_type, e)
        return _error_result(e)

    return {
        "success": True,
        "event": event_type,
        "subtask": before,
        **_summary(orchestrator),
    }


# ============================================================================
# Operations
# ============================================================================

def workflow_start(
    task_id: str,
    subtasks: Optional[list[dict]] = None,
    task_title: Optional[str] = None,
    branch_name: Optional[str] = None,
    tag: Optional[str] = None,
    task_source: Optional[TaskSource] = None,
    vcs: Optional[VersionControl] = None,
    force: bool = False,
    project_dir: Optional[str] = None
) -> dict[str, Any]:
    config, store = _open_store(project_dir)

    try:
        with store.lock():
            if store.exists() and not force:
                existing = store.load()
                if isinstance(existing, dict) and existing.get("phase") == SUBTASK_LOOP:
                    existing_id = (existing.get("context") or {}).get("taskId")
                    raise TransitionError(
                        f"A workflow for task {existing_id} is already in progress",
                        hint="Resume it, abort it, or start again with force"
                    )

            if subtasks is None and task_source is not None:
                found = task_source.get_task_with_subtask(str(task_id)) or {}
                task = found.get("task")
                if not task:
                    raise NotFoundError(
                        f"Task {task_id} not found",
                        hint="Check the task id against the task source"
                    )
                subtasks = _subtasks_from_task(task)
                task_title = task_title or task.get("title")

            branch = branch_name or _generate_branch_name(task_id, task_title, config["branch_prefix"])
            orchestrator = WorkflowOrchestrator({
                "taskId": task_id,
                "branchName": branch,
                "tag": tag or config["default_tag"],
                "subtasks": subtasks,
                "metadata": {"taskTitle": task_title or ""},
            }, config["max_attempts"])

            if vcs is not None:
                vcs.ensure_git_repository()
                vcs.ensure_clean_working_tree()
                vcs.create_and_checkout_branch(branch)

            orchestrator.enable_auto_persist(store.save)
            orchestrator.persist_state()
    except WorkflowError as e:
        logger.info("Could not start workflow for task %s: %s", task_id, e)
        return _error_result(e)

    logger.info("Started TDD workflow for task %s on %s", task_id, branch)
    return {
        "success": True,
        "state_file": str(store.state_file),
        "tag": orchestrator.get_context()["tag"],
        **_summary(orchestrator),
        "message": f"Started TDD workflow for task {task_id} on branch {branch}",
    }


def workflow_next(project_dir: Optional[str] = None) -> dict[str, Any]:
    config, store = _open_store(project_dir)
    try:
        with store.lock():
            orchestrator = _load_orchestrator(store, config)
    except WorkflowError as e:
        return _error_result(e)

    return {"success": True, **_summary(orchestrator)}


def workflow_complete_phase(
    test_results: Optional[dict],
    project_dir: Optional[str] = None
) -> dict[str, Any]:
    """Complete RED or GREEN, whichever is current."""
    config, store = _open_store(project_dir)
    try:
        with store.lock():
            orchestrator = _load_orchestrator(store, config)
            tdd_phase = orchestrator.get_current_tdd_phase()
            if orchestrator.get_current_phase() == SUBTASK_LOOP and tdd_phase == COMMIT:
                raise TransitionError(
                    "Current phase is COMMIT; it is completed by committing",
                    hint=PHASE_HINTS[COMMIT]
                )

            event_type = COMPLETION_EVENTS.get(tdd_phase, GREEN_COMPLETE)
            subtask = orchestrator.get_current_subtask()
            orchestrator.transition(event_type, {"testResults": test_results})
    except WorkflowError as e:
        logger.info("Phase completion rejected: %s", e)
        return _error_result(e)

    return {
        "success": True,
        "event": event_type,
        "completed_phase": tdd_phase,
        "subtask": subtask,
        **_summary(orchestrator),
    }


def workflow_record_failed_attempt(
    test_results: Optional[dict],
    project_dir: Optional[str] = None
) -> dict[str, Any]:
    return _send(GREEN_ATTEMPT_FAILED, {"testResults": test_results}, project_dir)


def workflow_force_continue(project_dir: Optional[str] = None) -> dict[str, Any]:
    return _send(FORCE_CONTINUE, None, project_dir)


def workflow_commit(
    files: Optional[list[str]] = None,
    vcs: Optional[VersionControl] = None,
    message_generator: Optional[MessageGenerator] = None,
    project_dir: Optional[str] = None
) -> dict[str, Any]:
    """Commit the current subtask and advance to the next one.

    Without `vcs` the commit is assumed to have been made by the caller and
    only the workflow is advanced.
    """
    config, store = _open_store(project_dir)
    files = list(files or [])
    message = None
    commit = None

    try:
        with store.lock():
            orchestrator = _load_orchestrator(store, config)
            phase = orchestrator.get_current_phase()
            if phase != SUBTASK_LOOP:
                raise TransitionError(f"Nothing to commit: workflow is {phase}")

            tdd_phase = orchestrator.get_current_tdd_phase()
            if tdd_phase != COMMIT:
                raise TransitionError(
                    f"{COMMIT_COMPLETE} is not valid in {tdd_phase} phase",
                    hint=PHASE_HINTS[tdd_phase]
                )

            context = orchestrator.get_context()
            subtask = orchestrator.get_current_subtask()

            if vcs is not None:
                if files:
                    vcs.stage_files(files)
                if not vcs.has_staged_changes():
                    raise ValidationError(
                        f"No staged changes to commit for subtask {subtask['id']}",
                        hint="Stage the subtask's changes, or pass the files to commit"
                    )

                if message_generator is not None:
                    message = message_generator.generate_message(
                        subtask=subtask,
                        phase=COMMIT,
                        task_id=context["taskId"],
                        branch_name=context["branchName"],
                        files=files,
                    )
                else:
                    message = f"feat(task-{context['taskId']}): {subtask['title'] or subtask['id']}"

                vcs.create_commit(message)
                commit = vcs.get_last_commit()
                logger.info("Committed subtask %s: %s", subtask["id"], message)

            orchestrator.transition(COMMIT_COMPLETE)
    except WorkflowError as e:
        logger.info("Commit rejected: %s", e)
        return _error_result(e)

    return {
        "success": True,
        "event": COMMIT_COMPLETE,
        "subtask": subtask,
        "commit_message": message,
        "commit": commit,
        **_summary(orchestrator),
    }


def workflow_status(
    project_dir: Optional[str] = None,
    vcs: Optional[VersionControl] = None
) -> dict[str, Any]:
    config, store = _open_store(project_dir)
    try:
        with store.lock():
            orchestrator = _load_orchestrator(store, config)
    except WorkflowError as e:
        return _error_result(e)

    result = {
        "success": True,
        "state": orchestrator.get_state(),
        "can_proceed": orchestrator.can_proceed(),
        **_summary(orchestrator),
    }
    if vcs is not None:
        result["git_status"] = vcs.get_status()
    return result


def workflow_resume(project_dir: Optional[str] = None) -> dict[str, Any]:
    config, store = _open_store(project_dir)
    try:
        with store.lock():
            orchestrator = _load_orchestrator(store, config)
    except WorkflowError as e:
        logger.warning("Resume failed: %s", e)
        return _error_result(e)

    logger.info("Resumed TDD workflow for task %s", orchestrator.get_context()["taskId"])
    return {
        "success": True,
        "resumed": True,
        "state": orchestrator.get_state(),
        "can_proceed": orchestrator.can_proceed(),
        **_summary(orchestrator),
    }


def workflow_abort(
    reason: Optional[str] = None,
    purge: bool = False,
    project_dir: Optional[str] = None
) -> dict[str, Any]:
    """Abort the active workflow.

    Policy "archive" (the default) keeps the snapshot in ABORTED with an abort
    error record. `purge=True` or policy "delete" removes the snapshot and its
    history instead.
    """
    config, store = _open_store(project_dir)
    delete = purge or config["abort"]["policy"] == "delete"

    try:
        with store.lock():
            orchestrator = _load_orchestrator(store, config)
            if delete:
                orchestrator.disable_auto_persist()
            orchestrator.transition(ABORT, {"reason": reason})
            if delete:
                store.delete(include_history=True)
    except WorkflowError as e:
        logger.info("Abort rejected: %s", e)
        return _error_result(e)

    task_id = orchestrator.get_context()["taskId"]
    logger.info("Aborted TDD workflow for task %s (%s)", task_id, "deleted" if delete else "archived")
    return {
        "success": True,
        "task_id": task_id,
        "phase": orchestrator.get_current_phase(),
        "deleted": delete,
        "state_file": None if delete else str(store.state_file),
        "errors": orchestrator.get_context()["errors"],
        "message": f"Aborted TDD workflow for task {task_id}",
    }

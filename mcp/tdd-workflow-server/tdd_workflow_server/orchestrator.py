"""
Workflow Orchestrator

The façade external callers use to drive one TDD workflow. It composes the TDD
phase machine, the subtask sequencer, the progress calculator and the
persistence gateway. Every mutation goes through `transition`, which is
all-or-nothing: the event is guarded before anything changes, applied to a
working copy, handed to the persistence callback, and only then committed.

Usage:
    orchestrator = WorkflowOrchestrator({
        "taskId": "7",
        "branchName": "tdd/task-7",
        "tag": "master",
        "subtasks": [{"id": "7.1", "title": "Parse input"}],
        "metadata": {"taskTitle": "Input parsing"},
    })
    orchestrator.enable_auto_persist(store.save)
    orchestrator.transition("RED_COMPLETE", {"testResults": {"failed": 2, "passed": 0}})
"""

import copy
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from . import sequencer, tdd_phase
from .persistence import PersistenceGateway, PersistCallback
from .progress import get_progress
from .sequencer import ABORT, FORCE_CONTINUE
from .tdd_phase import RED_COMPLETE, GREEN_COMPLETE, COMMIT_COMPLETE, GREEN_ATTEMPT_FAILED
from .workflow_state import DEFAULT_MAX_ATTEMPTS, check_snapshot, create_initial_state


logger = logging.getLogger(__name__)

EVENTS = [
    RED_COMPLETE,
    GREEN_COMPLETE,
    COMMIT_COMPLETE,
    GREEN_ATTEMPT_FAILED,
    FORCE_CONTINUE,
    ABORT,
]

Listener = Callable[[dict], Any]


class WorkflowOrchestrator:
    """Drives one task's subtasks through RED -> GREEN -> COMMIT."""

    def __init__(self, context: dict, default_max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self._state = create_initial_state(context, default_max_attempts)
        self._gateway = PersistenceGateway()
        self._listeners: dict[str, list[Listener]] = {}

    # -- queries --------------------------------------------------------------

    def get_state(self) -> dict:
        return copy.deepcopy(self._state)

    def get_context(self) -> dict:
        return copy.deepcopy(self._state["context"])

    def get_current_phase(self) -> str:
        return self._state["phase"]

    def get_current_tdd_phase(self) -> str:
        return self._state["context"]["currentTDDPhase"]

    def get_current_subtask(self) -> Optional[dict]:
        subtask = sequencer.get_current_subtask(self._state)
        return copy.deepcopy(subtask) if subtask is not None else None

    def get_progress(self) -> dict[str, Any]:
        return get_progress(self._state["context"])

    def can_proceed(self) -> bool:
        return sequencer.can_proceed(self._state)

    # -- transitions ----------------------------------------------------------

    def _check(self, event_type: str, payload: Optional[dict]) -> tuple[Optional[type], str]:
        if event_type == FORCE_CONTINUE:
            return sequencer.check_force_continue(self._state)
        if event_type == ABORT:
            return sequencer.check_abort(self._state)
        return tdd_phase.check(self._state, event_type, payload)

    def _apply(self, state: dict, event_type: str, payload: Optional[dict]) -> list[dict]:
        if event_type == FORCE_CONTINUE:
            return sequencer.force_continue(state)
        if event_type == ABORT:
            reason = payload.get("reason") if isinstance(payload, dict) else None
            return sequencer.abort(state, reason)
        return tdd_phase.apply(state, event_type, payload)

    def transition(self, event_type: str, payload: Optional[dict] = None) -> dict:
        """Apply an event and return the new state.

        Raises:
            TransitionError: event not valid for the current phase
            ValidationError: phase-completion precondition failed

        A rejected event leaves the state untouched and never reaches the
        persistence callback. If the callback itself raises, the state is
        rolled back and the exception propagates.
        """
        error_cls, reason = self._check(event_type, payload)
        if error_cls is not None:
            logger.debug("Task %s: rejected %s: %s",
                         self._state["context"]["taskId"], event_type, reason)
            raise error_cls(reason, hint=tdd_phase.hint_for(self._state, error_cls))

        previous = self._state
        working = copy.deepcopy(previous)
        events = self._apply(working, event_type, payload)

        self._state = working
        try:
            persisted = self._gateway.persist(self._state)
        except Exception:
            self._state = previous
            raise

        logger.info(
            "Task %s: %s accepted (%s/%s -> %s/%s)",
            working["context"]["taskId"], event_type,
            previous["phase"], previous["context"]["currentTDDPhase"],
            working["phase"], working["context"]["currentTDDPhase"],
        )

        if persisted:
            events.append(sequencer.event("state:persisted"))
        for pending in events:
            self._emit(pending)

        return self.get_state()

    # -- persistence ----------------------------------------------------------

    def enable_auto_persist(self, callback: PersistCallback) -> None:
        self._gateway.enable(callback)

    def disable_auto_persist(self) -> None:
        self._gateway.disable()

    def persist_state(self) -> bool:
        """Explicitly hand the current state to the persistence callback.

        Construction and restore never persist on their own; callers that need
        the initial state durable call this once.
        """
        if not self._gateway.persist(self._state):
            return False
        self._emit(sequencer.event("state:persisted"))
        return True

    @staticmethod
    def can_resume_from_state(snapshot: Any) -> bool:
        ok, reason = check_snapshot(snapshot)
        if not ok:
            logger.debug("Snapshot not resumable: %s", reason)
        return ok

    def restore_state(self, snapshot: dict) -> None:
        """Replace internal state with a deep copy of `snapshot`.

        Does not re-validate; call can_resume_from_state first.
        """
        self._state = {
            "phase": snapshot["phase"],
            "context": copy.deepcopy(snapshot["context"]),
        }

    # -- events ---------------------------------------------------------------

    def on(self, event_type: str, listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def off(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, pending: dict) -> None:
        listeners = list(self._listeners.get(pending["type"], []))
        if not listeners:
            return

        data = dict(pending["data"])
        event_data = {
            "type": pending["type"],
            "timestamp": datetime.now(),
            "phase": data.pop("phase", self._state["phase"]),
            "tddPhase": self._state["context"]["currentTDDPhase"],
            "subtaskId": pending["subtaskId"],
            "data": data,
        }
        for listener in listeners:
            try:
                listener(dict(event_data))
            except Exception:
                logger.exception("Listener for %s failed", pending["type"])

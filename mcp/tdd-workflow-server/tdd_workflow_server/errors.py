"""
Error taxonomy for the TDD workflow.

Every error is raised synchronously to the caller. The `hint` attribute carries
the actionable message the caller-facing tools surface to the user.
"""

from typing import Optional


class WorkflowError(RuntimeError):
    """Base class for all workflow errors."""

    default_hint = ""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint if hint is not None else self.default_hint


class ConfigError(WorkflowError):
    """Invalid or empty subtask list (or other bad initial context) at construction."""

    default_hint = "Provide a task with at least one well-formed subtask"


class ValidationError(WorkflowError):
    """A phase-completion precondition failed (e.g. RED with zero failing tests)."""

    default_hint = "Re-run the tests and report results that satisfy the current phase"


class TransitionError(WorkflowError):
    """An event is not valid for the current phase."""

    default_hint = "Check the next action with 'next' before completing a phase"


class StateCorruptionError(WorkflowError):
    """A persisted snapshot failed structural validation."""

    default_hint = "Inspect the state file for damage, or abort and start a new workflow"


class NotFoundError(WorkflowError):
    """Resume/status/next requested with no persisted snapshot present."""

    default_hint = "Start a workflow first with 'start'"


__all__ = [
    "WorkflowError",
    "ConfigError",
    "ValidationError",
    "TransitionError",
    "StateCorruptionError",
    "NotFoundError",
]

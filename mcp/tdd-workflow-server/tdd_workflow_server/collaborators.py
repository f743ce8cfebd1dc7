"""
External collaborators consumed by the caller-facing tools.

None of these are implemented here. Callers hand in whatever object satisfies
the shape (a task-master client, a git wrapper, a commit message builder); the
workflow tools only call the methods listed below.
"""

from typing import Any, Optional, Protocol


class TaskSource(Protocol):
    """Supplies the task and its subtasks when a workflow is started."""

    def get_task_with_subtask(self, task_id: str) -> Optional[dict[str, Any]]:
        """Return {"task": {"id", "title", "subtasks": [{"id", "title", "status"}]}} or None."""
        ...


class VersionControl(Protocol):
    """The git operations the workflow needs around RED/GREEN/COMMIT."""

    def ensure_git_repository(self) -> None: ...

    def ensure_clean_working_tree(self) -> None: ...

    def create_and_checkout_branch(self, branch_name: str) -> None: ...

    def stage_files(self, files: list[str]) -> None: ...

    def has_staged_changes(self) -> bool: ...

    def get_status(self) -> dict[str, Any]: ...

    def create_commit(self, message: str) -> None: ...

    def get_last_commit(self) -> Optional[dict[str, Any]]: ...


class MessageGenerator(Protocol):
    """Builds the commit message for a completed subtask."""

    def generate_message(
        self,
        *,
        subtask: dict,
        phase: str,
        task_id: str,
        branch_name: str,
        files: list[str]
    ) -> str: ...

"""
Tests for progress calculation and initial state construction.

Run with: pytest tests/test_progress.py -v
"""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from tdd_workflow_server.errors import ConfigError
from tdd_workflow_server.progress import get_progress
from tdd_workflow_server.workflow_state import (
    create_initial_state,
    check_snapshot,
    is_count,
)


def context_with(statuses: list[str], index: int = 0) -> dict:
    return {
        "subtasks": [{"id": str(i), "status": s} for i, s in enumerate(statuses)],
        "currentSubtaskIndex": index,
    }


class TestProgress:
    """Percentage is round-half-up of completed / total."""

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 4, 0),
        (1, 2, 50),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (3, 8, 38),
        (4, 4, 100),
    ])
    def test_percentage(self, completed, total, expected):
        statuses = ["completed"] * completed + ["pending"] * (total - completed)
        assert get_progress(context_with(statuses, completed))["percentage"] == expected

    def test_blocked_and_in_progress_not_counted(self):
        progress = get_progress(context_with(["completed", "blocked", "in-progress"], 1))
        assert progress["completed"] == 1
        assert progress["current"] == 2

    def test_current_clamped_at_total(self):
        progress = get_progress(context_with(["completed", "completed"], 2))
        assert progress["current"] == 2
        assert progress["percentage"] == 100

    def test_empty_list(self):
        assert get_progress(context_with([]))["percentage"] == 0


class TestInitialStateValidation:
    """create_initial_state rejects bad contexts before building anything."""

    def test_numeric_ids_coerced(self):
        state = create_initial_state({"taskId": 4, "subtasks": [{"id": 1, "title": "a"}]})
        assert state["context"]["taskId"] == "4"
        assert state["context"]["subtasks"][0]["id"] == "1"

    def test_optional_fields_default(self):
        state = create_initial_state({"taskId": "4", "subtasks": [{"id": "4.1"}]})
        context = state["context"]
        assert context["branchName"] == ""
        assert context["tag"] == ""
        assert context["subtasks"][0]["title"] == ""

    def test_result_passes_snapshot_check(self):
        state = create_initial_state({"taskId": "4", "subtasks": [{"id": "4.1"}]})
        assert check_snapshot(state) == (True, "Snapshot is resumable")

    @pytest.mark.parametrize("subtask", [
        "4.1",
        {"title": "no id"},
        {"id": "  "},
        {"id": "4.1", "title": 3},
        {"id": "4.1", "attempts": -1},
        {"id": "4.1", "maxAttempts": 0},
    ])
    def test_bad_subtask(self, subtask):
        with pytest.raises(ConfigError):
            create_initial_state({"taskId": "4", "subtasks": [subtask]})

    def test_subtasks_must_be_list(self):
        with pytest.raises(ConfigError):
            create_initial_state({"taskId": "4", "subtasks": {"id": "4.1"}})

    def test_metadata_must_be_object(self):
        with pytest.raises(ConfigError):
            create_initial_state({"taskId": "4", "subtasks": [{"id": "4.1"}], "metadata": "x"})

    def test_is_count_excludes_bool(self):
        assert is_count(0) is True
        assert is_count(False) is False
        assert is_count(1, minimum=2) is False

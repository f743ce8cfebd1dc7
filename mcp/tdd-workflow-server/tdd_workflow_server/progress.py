"""Completion counts derived from the subtask list."""

import math
from typing import Any

from .workflow_state import STATUS_COMPLETED


def get_progress(context: dict) -> dict[str, Any]:
    subtasks = context["subtasks"]
    total = len(subtasks)
    completed = sum(1 for s in subtasks if s["status"] == STATUS_COMPLETED)

    # round half up: 1 of 8 -> 13
    percentage = math.floor(completed / total * 100 + 0.5) if total else 0

    return {
        "completed": completed,
        "total": total,
        "current": min(context["currentSubtaskIndex"] + 1, total),
        "percentage": percentage,
    }

"""
MCP Resources for the TDD Workflow Server

Provides URI-based access to workflow state and configuration data.

Resource URIs:
  - workflow://state                    - Full persisted workflow state
  - workflow://progress                 - Subtask completion progress
  - workflow://subtasks/{id}            - A single subtask
  - config://effective                  - Fully merged effective config
"""

import json
from typing import Any, Optional

from .config_tools import config_get_effective
from .workflow_tools import workflow_status


def get_workflow_state(project_dir: Optional[str] = None) -> dict[str, Any]:
    status = workflow_status(project_dir=project_dir)
    if not status.get("success"):
        return status
    return status["state"]


def get_workflow_progress(project_dir: Optional[str] = None) -> dict[str, Any]:
    status = workflow_status(project_dir=project_dir)
    if not status.get("success"):
        return status
    return {
        "task_id": status["task_id"],
        "phase": status["phase"],
        "tdd_phase": status["tdd_phase"],
        "current_subtask": status["current_subtask"],
        **status["progress"],
    }


def get_subtask(subtask_id: str, project_dir: Optional[str] = None) -> dict[str, Any]:
    status = workflow_status(project_dir=project_dir)
    if not status.get("success"):
        return status

    for subtask in status["state"]["context"]["subtasks"]:
        if subtask["id"] == subtask_id:
            return subtask
    return {"error": f"Subtask {subtask_id} not found"}


def resolve_resource(uri: str, project_dir: Optional[str] = None) -> str:
    if uri == "workflow://state":
        return json.dumps(get_workflow_state(project_dir), indent=2)

    if uri == "workflow://progress":
        return json.dumps(get_workflow_progress(project_dir), indent=2)

    if uri == "config://effective":
        return json.dumps(config_get_effective(project_dir), indent=2)

    if uri.startswith("workflow://subtasks/"):
        subtask_id = uri.replace("workflow://subtasks/", "", 1)
        return json.dumps(get_subtask(subtask_id, project_dir), indent=2)

    return json.dumps({"error": f"Unknown resource URI: {uri}"})


RESOURCE_DESCRIPTIONS = {
    "workflow://state": {
        "name": "TDD workflow state",
        "description": "Full persisted state of the active TDD workflow",
        "mimeType": "application/json"
    },
    "workflow://progress": {
        "name": "TDD workflow progress",
        "description": "Completed, total and current subtask with percentage",
        "mimeType": "application/json"
    },
    "config://effective": {
        "name": "Effective configuration",
        "description": "Fully merged TDD workflow configuration from all sources",
        "mimeType": "application/json"
    }
}


RESOURCE_TEMPLATES = {
    "workflow://subtasks/{subtask_id}": {
        "name": "Subtask",
        "description": "Status and attempt count of one subtask by ID",
        "mimeType": "application/json"
    }
}

#!/usr/bin/env python3
"""
TDD Workflow MCP Server

Drives a task's subtasks through RED -> GREEN -> COMMIT. Each tool call loads
the checkpoint, applies at most one transition and writes it back, so the
workflow survives restarts of the server or the agent driving it.
"""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
    Resource,
    ResourceTemplate,
)

from .workflow_tools import (
    workflow_start,
    workflow_next,
    workflow_complete_phase,
    workflow_record_failed_attempt,
    workflow_force_continue,
    workflow_commit,
    workflow_status,
    workflow_resume,
    workflow_abort,
)
from .config_tools import config_get_effective
from .resources import RESOURCE_DESCRIPTIONS, RESOURCE_TEMPLATES, resolve_resource

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

server = Server("tdd-workflow-server")


PROJECT_DIR_PROPERTY = {
    "type": "string",
    "description": "Project root holding the workflow state. Defaults to the server's working directory."
}

TEST_RESULTS_PROPERTY = {
    "type": "object",
    "description": "Test run summary",
    "properties": {
        "total": {"type": "integer"},
        "passed": {"type": "integer"},
        "failed": {"type": "integer"},
        "skipped": {"type": "integer"}
    },
    "required": ["passed", "failed"]
}


TOOLS = [
    Tool(
        name="tdd_start",
        description="Start a TDD workflow for a task. Subtasks are worked one at a time through RED -> GREEN -> COMMIT. Refuses if a workflow is already in progress unless force is set.",
        inputSchema={
            "type": "object",
            "properties": {
                "task_id": {
                    "type": "string",
                    "description": "Task identifier (e.g., '7')"
                },
                "subtasks": {
                    "type": "array",
                    "description": "Ordered subtasks, each with 'id' and 'title' (optional 'maxAttempts')",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "title": {"type": "string"},
                            "maxAttempts": {"type": "integer", "minimum": 1}
                        },
                        "required": ["id"]
                    }
                },
                "task_title": {
                    "type": "string",
                    "description": "Task title, used to name the branch"
                },
                "branch_name": {
                    "type": "string",
                    "description": "Branch name. Generated from branch_prefix and the title if omitted."
                },
                "tag": {
                    "type": "string",
                    "description": "Task list tag. Defaults to config default_tag."
                },
                "force": {
                    "type": "boolean",
                    "description": "Replace a workflow that is still in progress",
                    "default": False
                },
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": ["task_id", "subtasks"]
        }
    ),
    Tool(
        name="tdd_next",
        description="Get the next action for the active workflow: write_failing_test, implement, commit, force_continue_or_abort, done or aborted.",
        inputSchema={
            "type": "object",
            "properties": {
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": []
        }
    ),
    Tool(
        name="tdd_complete_phase",
        description="Complete the current RED or GREEN phase. RED needs at least one failing test; GREEN needs zero failures.",
        inputSchema={
            "type": "object",
            "properties": {
                "test_results": TEST_RESULTS_PROPERTY,
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": ["test_results"]
        }
    ),
    Tool(
        name="tdd_record_failed_attempt",
        description="Record a GREEN attempt that still has failing tests. The subtask is blocked once its attempt budget is used up.",
        inputSchema={
            "type": "object",
            "properties": {
                "test_results": TEST_RESULTS_PROPERTY,
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": ["test_results"]
        }
    ),
    Tool(
        name="tdd_force_continue",
        description="Reset the attempt budget of a blocked subtask so GREEN can be retried.",
        inputSchema={
            "type": "object",
            "properties": {
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": []
        }
    ),
    Tool(
        name="tdd_commit",
        description="Complete the COMMIT phase once the subtask's changes are committed, and advance to the next subtask.",
        inputSchema={
            "type": "object",
            "properties": {
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": []
        }
    ),
    Tool(
        name="tdd_status",
        description="Full workflow state with progress and whether the workflow can proceed.",
        inputSchema={
            "type": "object",
            "properties": {
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": []
        }
    ),
    Tool(
        name="tdd_resume",
        description="Validate the persisted checkpoint and resume the workflow from it.",
        inputSchema={
            "type": "object",
            "properties": {
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": []
        }
    ),
    Tool(
        name="tdd_abort",
        description="Abort the active workflow. The checkpoint is kept in ABORTED state unless purge is set or config abort.policy is 'delete'.",
        inputSchema={
            "type": "object",
            "properties": {
                "reason": {
                    "type": "string",
                    "description": "Why the workflow is being aborted"
                },
                "purge": {
                    "type": "boolean",
                    "description": "Delete the checkpoint and its history",
                    "default": False
                },
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": []
        }
    ),
    Tool(
        name="config_get_effective",
        description="Get the fully merged TDD workflow configuration from defaults, global and project config files.",
        inputSchema={
            "type": "object",
            "properties": {
                "project_dir": PROJECT_DIR_PROPERTY
            },
            "required": []
        }
    ),
]


@server.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    try:
        project_dir = arguments.get("project_dir")
        if name == "tdd_start":
            result = workflow_start(
                task_id=arguments["task_id"],
                subtasks=arguments.get("subtasks"),
                task_title=arguments.get("task_title"),
                branch_name=arguments.get("branch_name"),
                tag=arguments.get("tag"),
                force=arguments.get("force", False),
                project_dir=project_dir
            )
        elif name == "tdd_next":
            result = workflow_next(project_dir=project_dir)
        elif name == "tdd_complete_phase":
            result = workflow_complete_phase(
                test_results=arguments.get("test_results"),
                project_dir=project_dir
            )
        elif name == "tdd_record_failed_attempt":
            result = workflow_record_failed_attempt(
                test_results=arguments.get("test_results"),
                project_dir=project_dir
            )
        elif name == "tdd_force_continue":
            result = workflow_force_continue(project_dir=project_dir)
        elif name == "tdd_commit":
            result = workflow_commit(project_dir=project_dir)
        elif name == "tdd_status":
            result = workflow_status(project_dir=project_dir)
        elif name == "tdd_resume":
            result = workflow_resume(project_dir=project_dir)
        elif name == "tdd_abort":
            result = workflow_abort(
                reason=arguments.get("reason"),
                purge=arguments.get("purge", False),
                project_dir=project_dir
            )
        elif name == "config_get_effective":
            result = config_get_effective(project_dir=project_dir)
        else:
            result = {"error": f"Unknown tool: {name}"}

        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    except Exception as e:
        logger.exception(f"Error executing tool {name}")
        return [TextContent(
            type="text",
            text=json.dumps({"error": str(e), "tool": name}, indent=2)
        )]


@server.list_resources()
async def list_resources() -> list[Resource]:
    return [
        Resource(
            uri=uri,
            name=info["name"],
            mimeType=info["mimeType"],
            description=info["description"]
        )
        for uri, info in RESOURCE_DESCRIPTIONS.items()
    ]


@server.list_resource_templates()
async def list_resource_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            uriTemplate=template,
            name=info["name"],
            mimeType=info["mimeType"],
            description=info["description"]
        )
        for template, info in RESOURCE_TEMPLATES.items()
    ]


@server.read_resource()
async def read_resource(uri: str) -> str:
    return resolve_resource(str(uri))


async def async_main():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )


def main():
    """Entry point for the MCP server."""
    level = config_get_effective()["config"]["logging"]["level"]
    logging.getLogger().setLevel(str(level).upper())
    asyncio.run(async_main())


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
TDD Workflow: CLI wrapper around the TDD workflow tools.

Each subcommand performs at most one workflow transition against the
checkpoint in the project directory and prints structured JSON describing the
result and the next action. Exit code is 1 whenever the result is an error.

Usage:
    python3 scripts/tdd_workflow.py start --task-id 7 --title "Input parsing" --subtasks '[{"id": "7.1", "title": "Parse"}]'
    python3 scripts/tdd_workflow.py next
    python3 scripts/tdd_workflow.py complete --failed 2 --passed 5
    python3 scripts/tdd_workflow.py fail-attempt --failed 1 --passed 6
    python3 scripts/tdd_workflow.py force-continue
    python3 scripts/tdd_workflow.py commit
    python3 scripts/tdd_workflow.py status
    python3 scripts/tdd_workflow.py resume
    python3 scripts/tdd_workflow.py abort --reason "Requirements changed"
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add MCP server package to path so we can import directly
_SCRIPT_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _SCRIPT_DIR.parent
_MCP_PKG = _REPO_ROOT / "mcp" / "tdd-workflow-server"
if str(_MCP_PKG) not in sys.path:
    sys.path.insert(0, str(_MCP_PKG))

try:
    from filelock import Timeout
    from tdd_workflow_server.workflow_tools import (
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
    from tdd_workflow_server.config_tools import config_get_effective
except ImportError as e:
    print(
        f"Error: Could not import tdd-workflow-server package.\n"
        f"  Looked in: {_MCP_PKG}\n"
        f"  Import error: {e}\n"
        f"  Fix: Run 'pip install -e {_REPO_ROOT}' or ensure the package is installed.",
        file=sys.stderr,
    )
    sys.exit(1)


logger = logging.getLogger("tdd_workflow")


def _output(data: dict) -> None:
    """Print JSON to stdout."""
    json.dump(data, sys.stdout, indent=2)
    sys.stdout.write("\n")


def _parse_subtasks(raw: str) -> list[dict]:
    """Accept a JSON array, or comma-separated 'id:title' pairs."""
    raw = raw.strip()
    if raw.startswith("["):
        return json.loads(raw)

    subtasks = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        subtask_id, _, title = item.partition(":")
        subtasks.append({"id": subtask_id.strip(), "title": title.strip()})
    return subtasks


def _test_results(args: argparse.Namespace) -> dict:
    results = {"failed": args.failed, "passed": args.passed}
    if args.skipped is not None:
        results["skipped"] = args.skipped
    results["total"] = args.total if args.total is not None else (
        args.failed + args.passed + (args.skipped or 0)
    )
    return results


def cmd_start(args: argparse.Namespace) -> dict:
    """Start a workflow.

    Wraps: workflow_start
    """
    subtasks = None
    if args.subtasks_file:
        subtasks = json.loads(Path(args.subtasks_file).read_text(encoding="utf-8"))
    elif args.subtasks:
        subtasks = _parse_subtasks(args.subtasks)

    return workflow_start(
        task_id=args.task_id,
        subtasks=subtasks,
        task_title=args.title,
        branch_name=args.branch,
        tag=args.tag,
        force=args.force,
        project_dir=args.project_dir,
    )


def cmd_next(args: argparse.Namespace) -> dict:
    return workflow_next(project_dir=args.project_dir)


def cmd_complete(args: argparse.Namespace) -> dict:
    """Complete RED or GREEN with the latest test run.

    Wraps: workflow_complete_phase
    """
    return workflow_complete_phase(_test_results(args), project_dir=args.project_dir)


def cmd_fail_attempt(args: argparse.Namespace) -> dict:
    return workflow_record_failed_attempt(_test_results(args), project_dir=args.project_dir)


def cmd_force_continue(args: argparse.Namespace) -> dict:
    return workflow_force_continue(project_dir=args.project_dir)


def cmd_commit(args: argparse.Namespace) -> dict:
    """Mark the current subtask committed and advance.

    Wraps: workflow_commit (the git commit itself is made by the caller)
    """
    return workflow_commit(project_dir=args.project_dir)


def cmd_status(args: argparse.Namespace) -> dict:
    return workflow_status(project_dir=args.project_dir)


def cmd_resume(args: argparse.Namespace) -> dict:
    return workflow_resume(project_dir=args.project_dir)


def cmd_abort(args: argparse.Namespace) -> dict:
    return workflow_abort(reason=args.reason, purge=args.purge, project_dir=args.project_dir)


def _classify_error(e: Exception) -> dict:
    """Map exceptions to structured, actionable error messages."""
    msg = str(e)
    etype = type(e).__name__

    if isinstance(e, Timeout):
        return {"success": False, "error": "Workflow state is locked by another process",
                "error_type": "LockTimeout",
                "hint": "Wait for the other workflow command to finish, then retry"}

    if isinstance(e, json.JSONDecodeError):
        return {"success": False, "error": f"Invalid JSON argument: {msg}",
                "error_type": "ArgumentError",
                "hint": "Pass subtasks as a JSON array or as 'id:title,id:title'"}

    if isinstance(e, FileNotFoundError):
        return {"success": False, "error": f"File not found: {msg}",
                "error_type": "ArgumentError",
                "hint": "Check that the file path exists and is accessible"}

    if isinstance(e, PermissionError):
        return {"success": False, "error": f"Permission denied: {msg}",
                "error_type": etype,
                "hint": "Check file permissions on the workflow state directory"}

    return {"success": False, "error": f"Unexpected error: {etype}: {msg}",
            "error_type": etype,
            "hint": "Re-run with --verbose for details"}


def _add_test_result_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--failed", type=int, required=True, help="Number of failing tests")
    parser.add_argument("--passed", type=int, required=True, help="Number of passing tests")
    parser.add_argument("--skipped", type=int, help="Number of skipped tests")
    parser.add_argument("--total", type=int, help="Total tests (defaults to the sum)")


def main():
    parser = argparse.ArgumentParser(
        description="TDD Workflow: drive subtasks through RED, GREEN and COMMIT"
    )
    parser.add_argument("--project-dir", help="Project root (defaults to the current directory)")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # start
    p_start = subparsers.add_parser("start", help="Start a TDD workflow for a task")
    p_start.add_argument("--task-id", required=True, help="Task identifier")
    p_start.add_argument("--subtasks", help="JSON array, or comma-separated 'id:title' pairs")
    p_start.add_argument("--subtasks-file", help="Path to a JSON file with the subtask array")
    p_start.add_argument("--title", help="Task title (used for the branch name)")
    p_start.add_argument("--branch", help="Branch name")
    p_start.add_argument("--tag", help="Task list tag")
    p_start.add_argument("--force", action="store_true", help="Replace an in-progress workflow")

    # next
    subparsers.add_parser("next", help="Get the next action")

    # complete
    p_complete = subparsers.add_parser("complete", help="Complete the current RED or GREEN phase")
    _add_test_result_args(p_complete)

    # fail-attempt
    p_fail = subparsers.add_parser("fail-attempt", help="Record a failed GREEN attempt")
    _add_test_result_args(p_fail)

    # force-continue
    subparsers.add_parser("force-continue", help="Unblock a subtask that used up its attempts")

    # commit
    subparsers.add_parser("commit", help="Complete the COMMIT phase and advance")

    # status
    subparsers.add_parser("status", help="Show full workflow state and progress")

    # resume
    subparsers.add_parser("resume", help="Validate the checkpoint and resume")

    # abort
    p_abort = subparsers.add_parser("abort", help="Abort the workflow")
    p_abort.add_argument("--reason", help="Why the workflow is aborted")
    p_abort.add_argument("--purge", action="store_true", help="Delete the checkpoint and its history")

    args = parser.parse_args()

    level = "DEBUG" if args.verbose else config_get_effective(args.project_dir)["config"]["logging"]["level"]
    logging.basicConfig(level=str(level).upper(), stream=sys.stderr)

    commands = {
        "start": cmd_start,
        "next": cmd_next,
        "complete": cmd_complete,
        "fail-attempt": cmd_fail_attempt,
        "force-continue": cmd_force_continue,
        "commit": cmd_commit,
        "status": cmd_status,
        "resume": cmd_resume,
        "abort": cmd_abort,
    }

    try:
        result = commands[args.command](args)
    except Exception as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        _output(_classify_error(e))
        sys.exit(1)

    _output(result)
    if result.get("success") is False:
        sys.exit(1)


if __name__ == "__main__":
    main()

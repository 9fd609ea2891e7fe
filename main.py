"""MCP server exposing Dev Agent goal workflow tools."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from mcp.server.fastmcp import FastMCP

from devagent.config import resolve_database_path, resolve_project_root
from devagent.errors import ConfigError
from devagent.devagent_logging import setup_logging
from devagent.git import GitService
from devagent.storage import StorageService
from devagent.workflow import WorkflowManager

mcp = FastMCP("dev-agent")


def _resolve_root(root: Optional[str]) -> Path:
    return resolve_project_root(root)


@contextmanager
def _workflow(root: Optional[str]) -> Iterator[WorkflowManager]:
    resolved = _resolve_root(root)
    storage = StorageService(resolve_database_path(resolved))
    manager = WorkflowManager(storage, GitService(resolved))
    try:
        yield manager
    finally:
        manager.close()
        storage.close()


@mcp.tool()
def init_project(root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 1: Initialize Dev Agent in a git repository.
    Creates the goal database and writes default configuration for unset keys."""

    with _workflow(root) as workflow:
        return workflow.initialize_project().to_dict()


@mcp.tool()
def create_goal(title: str, description: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Create a new goal in 'todo'. Titles must be unique and 3-100 characters long;
    validation warnings (style, missing description) are returned but do not block creation."""

    with _workflow(root) as workflow:
        return workflow.create_goal(title, description).to_dict()


@mcp.tool()
def start_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Start working on a 'todo' goal: requires a clean working tree, updates the develop
    branch and creates feature/<goal-id>-<slug>."""

    with _workflow(root) as workflow:
        return workflow.start_goal(goal_id).to_dict()


@mcp.tool()
def complete_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Mark an 'in_progress' goal done. Must be run while on the goal's branch."""

    with _workflow(root) as workflow:
        return workflow.complete_goal(goal_id).to_dict()


@mcp.tool()
def stop_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Stop working on an 'in_progress' goal and switch back to the develop branch."""

    with _workflow(root) as workflow:
        return workflow.stop_goal(goal_id).to_dict()


@mcp.tool()
def archive_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Archive a goal from any status that allows it."""

    with _workflow(root) as workflow:
        return workflow.archive_goal(goal_id).to_dict()


@mcp.tool()
def reopen_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Move a 'done' or 'archived' goal back to 'todo'."""

    with _workflow(root) as workflow:
        return workflow.reopen_goal(goal_id).to_dict()


@mcp.tool()
def delete_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Permanently delete a goal."""

    with _workflow(root) as workflow:
        return workflow.delete_goal(goal_id).to_dict()


@mcp.tool()
def get_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Retrieve a single goal."""

    with _workflow(root) as workflow:
        return workflow.get_goal(goal_id).to_dict()


@mcp.tool()
def list_goals(status: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """List goals, optionally filtered by status (todo, in_progress, done, archived).
    Per-status counts always cover every goal."""

    with _workflow(root) as workflow:
        return workflow.list_goals(status).to_dict()


@mcp.resource("dev-agent://goals")
def resource_goals() -> str:
    """Resource view listing goals grouped by status."""

    try:
        root = _resolve_root(None)
    except ConfigError:
        return "No project root detected. Launch tools with a 'root' argument or set DEV_AGENT_PROJECT_ROOT."

    with _workflow(str(root)) as workflow:
        result = workflow.list_goals()
    if not result.success:
        return result.message

    goals = result.data["goals"]
    if not goals:
        return "No goals have been created yet."

    counts = result.data["counts"]
    lines = ["Dev Agent Goals"]
    for status, count in counts.items():
        lines.append("")
        lines.append(f"{status} ({count})")
        for goal in goals:
            if goal["status"] != status:
                continue
            lines.append(f"- {goal['id']}: {goal['title']}")
            if goal.get("branch_name"):
                lines.append(f"  Branch: {goal['branch_name']}")
            if goal.get("external_issue_id"):
                lines.append(f"  Issue: #{goal['external_issue_id']}")

    return "\n".join(lines)


@mcp.tool()
def validate_goal(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Run every validation rule against a stored goal."""

    with _workflow(root) as workflow:
        return workflow.validate_goal(goal_id).to_dict()


@mcp.tool()
def validate_all_goals(root: Optional[str] = None) -> Dict[str, Any]:
    """Validate all goals and report valid, error and warning counts."""

    with _workflow(root) as workflow:
        return workflow.validate_all_goals().to_dict()


@mcp.tool()
def set_config(key: str, value: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Set a configuration value (e.g. github.owner, github.repo, branches.develop)."""

    with _workflow(root) as workflow:
        return workflow.set_configuration(key, value).to_dict()


@mcp.tool()
def get_config(key: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Read a configuration value."""

    with _workflow(root) as workflow:
        return workflow.get_configuration(key).to_dict()


@mcp.tool()
def list_config(root: Optional[str] = None) -> Dict[str, Any]:
    """List every stored configuration value."""

    with _workflow(root) as workflow:
        return workflow.list_configuration().to_dict()


@mcp.tool()
def delete_config(key: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a stored configuration value."""

    with _workflow(root) as workflow:
        return workflow.delete_configuration(key).to_dict()


@mcp.tool()
def git_status(root: Optional[str] = None) -> Dict[str, Any]:
    """Current branch, ahead/behind counts, changed files and the goal linked to the branch."""

    with _workflow(root) as workflow:
        return workflow.git_status().to_dict()


@mcp.tool()
def sync_from_github(root: Optional[str] = None) -> Dict[str, Any]:
    """Create or update goals from open GitHub issues in the "Todo" milestone.
    Requires github.owner, github.repo and the GITHUB_TOKEN environment variable.
    Failures are reported per issue and do not stop the sync."""

    with _workflow(root) as workflow:
        return workflow.sync_from_issue_tracker().to_dict()


@mcp.tool()
def sync_goal_to_github(goal_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Push a goal's status to its linked GitHub issue (milestone and open/closed state)."""

    with _workflow(root) as workflow:
        return workflow.sync_goal_to_issue_tracker(goal_id).to_dict()


if __name__ == "__main__":
    setup_logging()
    mcp.run(transport="stdio")

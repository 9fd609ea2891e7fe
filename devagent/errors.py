"""Exception hierarchy for Dev Agent.

Every error raised by the storage, version-control and issue-tracker
layers derives from :class:`DevAgentError`. The workflow layer catches
these at each operation boundary and reports ``code`` to the caller.
"""

from __future__ import annotations

from typing import Optional


class DevAgentError(Exception):
    """Base class for recoverable Dev Agent failures."""

    code = "dev_agent_error"

    def __init__(self, message: str, *, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion


# ----------------------------------------------------------------------
# Identifiers
# ----------------------------------------------------------------------


class InvalidTypeTag(DevAgentError, ValueError):
    code = "invalid_type_tag"


# ----------------------------------------------------------------------
# Storage
# ----------------------------------------------------------------------


class StorageError(DevAgentError):
    code = "storage_error"


class GoalNotFound(StorageError):
    code = "goal_not_found"

    def __init__(self, goal_id: str):
        super().__init__(f"Goal {goal_id} not found")
        self.goal_id = goal_id


class DuplicateId(StorageError):
    code = "duplicate_id"

    def __init__(self, goal_id: str):
        super().__init__(f"Goal id {goal_id} already exists")
        self.goal_id = goal_id


class DuplicateExternalIssue(StorageError):
    code = "duplicate_external_issue"

    def __init__(self, issue_id: int):
        super().__init__(f"Issue #{issue_id} is already linked to another goal")
        self.issue_id = issue_id


class ConfigNotFound(StorageError):
    code = "config_not_found"

    def __init__(self, key: str):
        super().__init__(f"Configuration key '{key}' not found")
        self.key = key


class StorageBusy(StorageError):
    code = "storage_busy"


class StorageNotInitialized(RuntimeError):
    """Raised when a closed store is used. Not recoverable by callers."""


# ----------------------------------------------------------------------
# Version control
# ----------------------------------------------------------------------


class GitError(DevAgentError):
    code = "git_error"

    def __init__(self, message: str, *, stderr: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class NotARepository(GitError):
    code = "not_a_repository"


class BranchAlreadyExists(GitError):
    code = "branch_already_exists"

    def __init__(self, branch: str):
        super().__init__(f"Branch '{branch}' already exists")
        self.branch = branch


class BranchNotFound(GitError):
    code = "branch_not_found"

    def __init__(self, branch: str):
        super().__init__(f"Branch '{branch}' not found")
        self.branch = branch


class MergeConflict(GitError):
    code = "merge_conflict"


class NetworkError(DevAgentError):
    """Remote unreachable, shared by the git and issue-tracker layers."""

    code = "network_error"


# ----------------------------------------------------------------------
# Issue tracker
# ----------------------------------------------------------------------


class IssueTrackerError(DevAgentError):
    code = "issue_tracker_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MilestoneNotFound(IssueTrackerError):
    code = "milestone_not_found"

    def __init__(self, title: str):
        super().__init__(f'Milestone "{title}" not found')
        self.title = title


class IssueTrackerNotConfigured(IssueTrackerError):
    code = "issue_tracker_not_configured"


# ----------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------


class ConfigError(DevAgentError, ValueError):
    code = "invalid_config"


# ----------------------------------------------------------------------
# Workflow preconditions
# ----------------------------------------------------------------------


class PreconditionError(DevAgentError):
    """A workflow precondition did not hold; nothing was changed."""

    code = "precondition_failed"


class InvalidGoalId(PreconditionError, ValueError):
    code = "invalid_goal_id"


class InvalidGoalStatus(PreconditionError):
    code = "invalid_goal_status"


class WorkingTreeDirty(PreconditionError):
    code = "working_tree_dirty"


class WrongBranch(PreconditionError):
    code = "wrong_branch"


class ValidationFailed(PreconditionError):
    code = "validation_failed"

    def __init__(self, message: str, results=None):
        super().__init__(message)
        self.results = list(results or [])

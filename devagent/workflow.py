"""Workflow management for Dev Agent.

This module drives the goal state machine. Every public operation
re-reads goal state and settings, checks its preconditions before
touching storage or git, and returns a :class:`CommandResult` instead of
raising.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Union

from .config import (
    WorkflowSettings,
    default_config,
    github_retries,
    github_token,
    validate_config_value,
)
from .devagent_logging import (
    log_error_with_context,
    log_goal_transition,
    log_operation,
    log_performance,
    observability_hooks,
)
from .errors import (
    DevAgentError,
    DuplicateId,
    InvalidGoalId,
    InvalidGoalStatus,
    IssueTrackerNotConfigured,
    GoalNotFound,
    PreconditionError,
    ValidationFailed,
    WorkingTreeDirty,
    WrongBranch,
)
from .ids import generate_goal_id
from .models import (
    CommandResult,
    Goal,
    GoalStatus,
    Issue,
    SyncFailure,
    SyncOutcome,
    SyncReport,
    ValidationResult,
    utc_now,
)
from .ports import IssueTracker, VersionControl
from .validation import ValidationContext, ValidationService

logger = logging.getLogger("devagent.workflow")

BRANCH_SLUG_LENGTH = 30
MAX_ID_ATTEMPTS = 5

# rules checked when an issue sync rewrites a goal title and description
SYNC_UPDATE_RULES = frozenset({"unique-title", "title-format", "external-issue-uniqueness"})


def slugify(title: str, max_length: int = BRANCH_SLUG_LENGTH) -> str:
    """Lowercase, drop anything but ``[a-z0-9]``, spaces and hyphens, hyphenate whitespace."""
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    slug = re.sub(r"\s+", "-", slug)
    return slug[:max_length]


def feature_branch_name(prefix: str, goal_id: str, title: str) -> str:
    return f"{prefix}/{goal_id}-{slugify(title)}"


class WorkflowManager:
    """Manages the goal lifecycle across storage, git and the issue tracker."""

    def __init__(
        self,
        storage,
        vcs: VersionControl,
        issue_tracker: Optional[IssueTracker] = None,
        *,
        id_generator: Callable[[], str] = generate_goal_id,
    ):
        self.storage = storage
        self.vcs = vcs
        self.validation = ValidationService(storage, vcs)
        self._issue_tracker = issue_tracker
        self._owns_tracker = False
        self._generate_id = id_generator

    def close(self) -> None:
        """Close an issue tracker this manager created itself."""
        if self._owns_tracker and self._issue_tracker is not None:
            self._issue_tracker.close()
            self._issue_tracker = None
            self._owns_tracker = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _settings(self) -> WorkflowSettings:
        settings = WorkflowSettings.load(self.storage)
        self.validation.in_progress_limit = settings.in_progress_limit
        return settings

    def _require_goal(self, goal_id: str, settings: WorkflowSettings) -> Goal:
        if not isinstance(goal_id, str) or not re.match(settings.id_pattern, goal_id):
            raise InvalidGoalId(
                f"Invalid goal ID format: {goal_id!r}. Expected format: g-xxxxxx",
                suggestion="Use list_goals to find the id of the goal",
            )
        goal = self.storage.get_goal(goal_id)
        if goal is None:
            raise GoalNotFound(goal_id)
        return goal

    @staticmethod
    def _require_status(goal: Goal, *expected: GoalStatus) -> None:
        if goal.status not in expected:
            wanted = "' or '".join(s.value for s in expected)
            raise InvalidGoalStatus(
                f"Goal {goal.id} is not in '{wanted}' status. Current status: {goal.status.value}"
            )

    @staticmethod
    def _require_transition(goal: Goal, target: GoalStatus) -> None:
        if not goal.status.can_transition_to(target):
            allowed = ", ".join(s.value for s in goal.status.allowed_transitions)
            raise InvalidGoalStatus(
                f'Cannot move goal {goal.id} from "{goal.status.value}" to "{target.value}"',
                suggestion=f'Allowed transitions from "{goal.status.value}": {allowed}',
            )

    def _require_valid(
        self,
        goal: Goal,
        context: Optional[ValidationContext] = None,
        *,
        new: bool = False,
        rules: Optional[frozenset] = None,
    ) -> List[ValidationResult]:
        if new:
            results = self.validation.validate_creation(goal, context)
        else:
            results = self.validation.validate(goal, context)
        if rules is not None:
            results = [r for r in results if r.rule in rules]
        summary = self.validation.summarize(results)
        if not summary.valid:
            raise ValidationFailed(
                f"Goal validation failed: {'; '.join(summary.error_messages())}",
                results,
            )
        return results

    def _tracker(self, settings: WorkflowSettings) -> IssueTracker:
        if self._issue_tracker is not None:
            return self._issue_tracker
        if not settings.github_configured:
            raise IssueTrackerNotConfigured(
                "GitHub repository not configured. Please set github.owner and github.repo"
            )

        from .github import GitHubService

        self._issue_tracker = GitHubService(
            settings.github_owner,
            settings.github_repo,
            github_token(),
            retries=github_retries(),
        )
        self._owns_tracker = True
        return self._issue_tracker

    def _insert_goal(
        self,
        title: str,
        description: Optional[str],
        settings: WorkflowSettings,
        *,
        external_issue_id: Optional[int] = None,
        context: Optional[ValidationContext] = None,
    ) -> tuple[Goal, List[ValidationResult]]:
        """Validate and persist a new goal, regenerating the id on collisions."""
        if context is None:
            context = self.validation.build_context()

        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            goal = Goal(
                id=self._generate_id(),
                title=title.strip(),
                status=settings.default_status,
                description=description,
                external_issue_id=external_issue_id,
            )
            results = self._require_valid(goal, context, new=True)
            try:
                created = self.storage.create_goal(goal)
            except DuplicateId:
                if attempt == MAX_ID_ATTEMPTS:
                    raise
                logger.warning(f"Generated goal id {goal.id} already exists, retrying")
                continue
            context.all_goals.insert(0, created)
            return created, results

    @staticmethod
    def _failure(operation: str, message: str, error: DevAgentError, **context: Any) -> CommandResult:
        if isinstance(error, PreconditionError):
            logger.warning(f"{message}: {error.message}")
        else:
            log_error_with_context(error, {"operation": operation, **context})

        data: Dict[str, Any] = {}
        if error.suggestion:
            data["suggestion"] = error.suggestion
        if isinstance(error, ValidationFailed):
            data["validation_results"] = [r.to_dict() for r in error.results]
        return CommandResult.fail(f"{message}: {error.message}", error.code, **data)

    # ------------------------------------------------------------------
    # Project setup
    # ------------------------------------------------------------------

    @log_performance("initialize_project")
    def initialize_project(self) -> CommandResult:
        logger.info("Initializing Dev Agent project")
        try:
            if not self.vcs.is_repository():
                return CommandResult.fail(
                    'Current directory is not a Git repository. Please run "git init" first.',
                    "not_a_repository",
                )

            with log_operation("initialize_project"):
                self.storage.initialize()
                written: List[str] = []
                with self.storage.transaction():
                    for key, value in default_config().items():
                        if self.storage.get_config(key) is None:
                            self.storage.set_config(key, value)
                            written.append(key)

            logger.info("Project initialized successfully")
            return CommandResult.ok(
                "Dev Agent project initialized successfully",
                migrations=self.storage.applied_migrations(),
                config_written=written,
            )
        except DevAgentError as e:
            return self._failure("initialize_project", "Failed to initialize project", e)

    # ------------------------------------------------------------------
    # Goal lifecycle
    # ------------------------------------------------------------------

    @log_performance("create_goal")
    def create_goal(self, title: str, description: Optional[str] = None) -> CommandResult:
        """Validate and store a new goal in ``todo``."""
        logger.info(f"Creating new goal: {title}")
        try:
            settings = self._settings()
            with log_operation("create_goal", title_length=len(title or "")):
                goal, results = self._insert_goal(title or "", description, settings)

            summary = self.validation.summarize(results)
            observability_hooks.log_goal_event("goal_created", goal_id=goal.id, title=goal.title)

            message = f"Goal {goal.id} created successfully"
            if summary.warnings:
                count = len(summary.warnings)
                message += f" ({count} warning{'s' if count > 1 else ''})"

            return CommandResult.ok(
                message,
                goal_id=goal.id,
                title=goal.title,
                status=goal.status.value,
                goal=goal.to_dict(),
                warnings=[w.message for w in summary.warnings],
            )
        except DevAgentError as e:
            return self._failure("create_goal", "Failed to create goal", e, title=title)

    @log_performance("start_goal")
    def start_goal(self, goal_id: str) -> CommandResult:
        """Branch off the develop branch and move a ``todo`` goal to ``in_progress``."""
        logger.info(f"Starting goal: {goal_id}")
        try:
            settings = self._settings()
            goal = self._require_goal(goal_id, settings)
            self._require_status(goal, GoalStatus.TODO)
            if not self.vcs.is_working_tree_clean():
                raise WorkingTreeDirty(
                    "Working directory is not clean. Please commit or stash your changes first."
                )

            branch_name = feature_branch_name(settings.feature_prefix, goal.id, goal.title)
            candidate = goal.with_changes(status=GoalStatus.IN_PROGRESS, branch_name=branch_name)
            summary = self.validation.summarize(self.validation.validate(candidate))

            with log_operation("start_goal", goal_id=goal.id, branch_name=branch_name):
                self.vcs.checkout(settings.develop_branch)
                self.vcs.pull(settings.remote, settings.develop_branch)
                # a branch left behind by an earlier failed start is reused
                if self.vcs.branch_exists(branch_name):
                    self.vcs.checkout(branch_name)
                else:
                    self.vcs.create_branch(branch_name)
                self.storage.update_goal(
                    goal.id,
                    status=GoalStatus.IN_PROGRESS,
                    branch_name=branch_name,
                )

            log_goal_transition(goal.id, goal.status.value, GoalStatus.IN_PROGRESS.value, branch_name=branch_name)
            logger.info(f"Started working on goal {goal.id} in branch {branch_name}")
            return CommandResult.ok(
                f"Started working on goal {goal.id}",
                goal_id=goal.id,
                branch_name=branch_name,
                status=GoalStatus.IN_PROGRESS.value,
                warnings=[w.message for w in summary.warnings],
            )
        except DevAgentError as e:
            return self._failure("start_goal", f"Failed to start goal {goal_id}", e, goal_id=goal_id)

    @log_performance("complete_goal")
    def complete_goal(self, goal_id: str) -> CommandResult:
        """Mark an ``in_progress`` goal done; must be run on the goal's branch."""
        logger.info(f"Completing goal: {goal_id}")
        try:
            settings = self._settings()
            goal = self._require_goal(goal_id, settings)
            self._require_status(goal, GoalStatus.IN_PROGRESS)

            current_branch = self.vcs.current_branch()
            if current_branch != goal.branch_name:
                raise WrongBranch(
                    f"You must be on branch {goal.branch_name} to complete goal {goal.id}. "
                    f"Current branch: {current_branch}",
                    suggestion=f"git checkout {goal.branch_name}" if goal.branch_name else None,
                )

            completed_at = utc_now()
            with log_operation("complete_goal", goal_id=goal.id):
                self.storage.update_goal(goal.id, status=GoalStatus.DONE, completed_at=completed_at)

            log_goal_transition(goal.id, goal.status.value, GoalStatus.DONE.value)
            logger.info(f"Goal {goal.id} marked as completed")
            return CommandResult.ok(
                f"Goal {goal.id} completed successfully",
                goal_id=goal.id,
                status=GoalStatus.DONE.value,
                completed_at=completed_at,
            )
        except DevAgentError as e:
            return self._failure("complete_goal", f"Failed to complete goal {goal_id}", e, goal_id=goal_id)

    @log_performance("stop_goal")
    def stop_goal(self, goal_id: str) -> CommandResult:
        """Return to the develop branch and put an ``in_progress`` goal back to ``todo``."""
        logger.info(f"Stopping work on goal: {goal_id}")
        try:
            settings = self._settings()
            goal = self._require_goal(goal_id, settings)
            self._require_status(goal, GoalStatus.IN_PROGRESS)

            with log_operation("stop_goal", goal_id=goal.id):
                self.vcs.checkout(settings.develop_branch)
                self.storage.update_goal(goal.id, status=GoalStatus.TODO, branch_name=None)

            log_goal_transition(goal.id, goal.status.value, GoalStatus.TODO.value)
            logger.info(f"Stopped working on goal {goal.id}")
            return CommandResult.ok(
                f"Stopped working on goal {goal.id}",
                goal_id=goal.id,
                status=GoalStatus.TODO.value,
            )
        except DevAgentError as e:
            return self._failure("stop_goal", f"Failed to stop goal {goal_id}", e, goal_id=goal_id)

    @log_performance("archive_goal")
    def archive_goal(self, goal_id: str) -> CommandResult:
        logger.info(f"Archiving goal: {goal_id}")
        try:
            settings = self._settings()
            goal = self._require_goal(goal_id, settings)
            self._require_transition(goal, GoalStatus.ARCHIVED)

            with log_operation("archive_goal", goal_id=goal.id):
                self.storage.update_goal(goal.id, status=GoalStatus.ARCHIVED, branch_name=None)

            log_goal_transition(goal.id, goal.status.value, GoalStatus.ARCHIVED.value)
            return CommandResult.ok(
                f"Goal {goal.id} archived",
                goal_id=goal.id,
                status=GoalStatus.ARCHIVED.value,
                previous_status=goal.status.value,
            )
        except DevAgentError as e:
            return self._failure("archive_goal", f"Failed to archive goal {goal_id}", e, goal_id=goal_id)

    @log_performance("reopen_goal")
    def reopen_goal(self, goal_id: str) -> CommandResult:
        """Bring a ``done`` or ``archived`` goal back to ``todo``."""
        logger.info(f"Reopening goal: {goal_id}")
        try:
            settings = self._settings()
            goal = self._require_goal(goal_id, settings)
            self._require_status(goal, GoalStatus.DONE, GoalStatus.ARCHIVED)

            with log_operation("reopen_goal", goal_id=goal.id):
                self.storage.update_goal(
                    goal.id,
                    status=GoalStatus.TODO,
                    branch_name=None,
                    completed_at=None,
                )

            log_goal_transition(goal.id, goal.status.value, GoalStatus.TODO.value)
            return CommandResult.ok(
                f"Goal {goal.id} reopened",
                goal_id=goal.id,
                status=GoalStatus.TODO.value,
                previous_status=goal.status.value,
            )
        except DevAgentError as e:
            return self._failure("reopen_goal", f"Failed to reopen goal {goal_id}", e, goal_id=goal_id)

    @log_performance("delete_goal")
    def delete_goal(self, goal_id: str) -> CommandResult:
        logger.info(f"Deleting goal: {goal_id}")
        try:
            settings = self._settings()
            goal = self._require_goal(goal_id, settings)
            self.storage.delete_goal(goal.id)
            observability_hooks.log_goal_event("goal_deleted", goal_id=goal.id, status=goal.status.value)
            return CommandResult.ok(f"Goal {goal.id} deleted", goal_id=goal.id)
        except DevAgentError as e:
            return self._failure("delete_goal", f"Failed to delete goal {goal_id}", e, goal_id=goal_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_goal(self, goal_id: str) -> CommandResult:
        try:
            goal = self._require_goal(goal_id, self._settings())
            return CommandResult.ok(f"Goal {goal.id}: {goal.title}", goal=goal.to_dict())
        except DevAgentError as e:
            return self._failure("get_goal", f"Failed to get goal {goal_id}", e, goal_id=goal_id)

    @log_performance("list_goals")
    def list_goals(self, status: Union[GoalStatus, str, None] = None) -> CommandResult:
        """List goals, optionally filtered; counts always cover every goal."""
        logger.info("Listing goals")
        try:
            status_filter = GoalStatus.parse(status) if status else None
        except ValueError as e:
            return CommandResult.fail(str(e), "invalid_status")

        try:
            goals = self.storage.list_goals(status_filter)
            counts = self.storage.count_goals_by_status()
            return CommandResult.ok(
                f"Found {len(goals)} goals",
                goals=[g.to_dict() for g in goals],
                counts=counts,
                total=sum(counts.values()),
            )
        except DevAgentError as e:
            return self._failure("list_goals", "Failed to list goals", e)

    @log_performance("validate_goal")
    def validate_goal(self, goal_id: str) -> CommandResult:
        try:
            goal = self._require_goal(goal_id, self._settings())
            results = self.validation.validate(goal)
            summary = self.validation.summarize(results)
            message = (
                f"Goal {goal.id} is valid"
                if summary.valid
                else f"Goal {goal.id} has {len(summary.errors)} validation error(s)"
            )
            return CommandResult.ok(
                message,
                goal_id=goal.id,
                valid=summary.valid,
                results=[r.to_dict() for r in results],
                summary=summary.to_dict(),
            )
        except DevAgentError as e:
            return self._failure("validate_goal", f"Failed to validate goal {goal_id}", e, goal_id=goal_id)

    @log_performance("validate_all_goals")
    def validate_all_goals(self) -> CommandResult:
        try:
            self._settings()
            context = self.validation.build_context()
            reports = []
            for goal in context.all_goals:
                summary = self.validation.summarize(self.validation.validate(goal, context))
                reports.append({
                    "goal_id": goal.id,
                    "title": goal.title,
                    "valid": summary.valid,
                    "errors": [r.message for r in summary.errors],
                    "warnings": [r.message for r in summary.warnings],
                })

            valid_count = sum(1 for r in reports if r["valid"])
            error_count = sum(len(r["errors"]) for r in reports)
            warning_count = sum(len(r["warnings"]) for r in reports)
            return CommandResult.ok(
                f"Validated {len(reports)} goals: {valid_count} valid, "
                f"{error_count} errors, {warning_count} warnings",
                goals=reports,
                valid_count=valid_count,
                error_count=error_count,
                warning_count=warning_count,
            )
        except DevAgentError as e:
            return self._failure("validate_all_goals", "Failed to validate goals", e)

    @log_performance("git_status")
    def git_status(self) -> CommandResult:
        try:
            status = self.vcs.status()
            goal = self.storage.find_goal_by_branch(status.branch) if status.branch else None
            message = f"On branch {status.branch or '(detached)'}"
            if goal is not None:
                message += f" working on goal {goal.id}"
            return CommandResult.ok(
                message,
                **status.to_dict(),
                goal=goal.to_dict() if goal else None,
            )
        except DevAgentError as e:
            return self._failure("git_status", "Failed to read git status", e)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_configuration(self, key: str, value: str) -> CommandResult:
        logger.info(f"Setting configuration: {key} = {value}")
        try:
            validate_config_value(key, value)
            self.storage.set_config(key, value)
            return CommandResult.ok(f"Configuration updated: {key} = {value}", key=key, value=value)
        except DevAgentError as e:
            return self._failure("set_configuration", f"Failed to set configuration {key}", e, key=key)

    def get_configuration(self, key: str) -> CommandResult:
        try:
            value = self.storage.get_config(key)
            if value is None:
                return CommandResult.fail(f"Configuration key '{key}' not found", "config_not_found")
            return CommandResult.ok(f"Configuration value: {value}", key=key, value=value)
        except DevAgentError as e:
            return self._failure("get_configuration", f"Failed to get configuration {key}", e, key=key)

    def list_configuration(self) -> CommandResult:
        try:
            entries = self.storage.list_config()
            return CommandResult.ok(
                f"Retrieved {len(entries)} configuration items",
                config={entry.key: entry.value for entry in entries},
                entries=[entry.to_dict() for entry in entries],
            )
        except DevAgentError as e:
            return self._failure("list_configuration", "Failed to list configuration", e)

    def delete_configuration(self, key: str) -> CommandResult:
        logger.info(f"Deleting configuration: {key}")
        try:
            self.storage.delete_config(key)
            return CommandResult.ok(f"Configuration deleted: {key}", key=key)
        except DevAgentError as e:
            return self._failure("delete_configuration", f"Failed to delete configuration {key}", e, key=key)

    # ------------------------------------------------------------------
    # Issue tracker sync
    # ------------------------------------------------------------------

    def _sync_issue(self, issue: Issue, settings: WorkflowSettings, context: ValidationContext) -> Union[SyncOutcome, SyncFailure]:
        try:
            existing = self.storage.find_goal_by_external_issue_id(issue.number)
            if existing is None:
                goal, _ = self._insert_goal(
                    issue.title,
                    issue.body,
                    settings,
                    external_issue_id=issue.number,
                    context=context,
                )
                return SyncOutcome(issue.number, goal.id, "created")

            title = issue.title.strip()
            if existing.title == title and existing.description == issue.body:
                return SyncOutcome(issue.number, existing.id, "unchanged")

            candidate = existing.with_changes(title=title, description=issue.body)
            self._require_valid(candidate, context, rules=SYNC_UPDATE_RULES)
            updated = self.storage.update_goal(existing.id, title=title, description=issue.body)
            context.all_goals = [updated if g.id == updated.id else g for g in context.all_goals]
            return SyncOutcome(issue.number, existing.id, "updated")
        except DevAgentError as e:
            logger.warning(f"Failed to sync issue #{issue.number}: {e}")
            return SyncFailure(issue.number, str(e))

    @log_performance("sync_from_issue_tracker")
    def sync_from_issue_tracker(self) -> CommandResult:
        """Pull open "Todo" issues into goals; failures are reported per issue."""
        logger.info("Syncing issues from GitHub")
        try:
            settings = self._settings()
            tracker = self._tracker(settings)
            with log_operation("sync_from_issue_tracker"):
                issues = tracker.fetch_open_todo_issues()
                context = self.validation.build_context()
                report = SyncReport.from_results(
                    self._sync_issue(issue, settings, context) for issue in issues
                )

            observability_hooks.log_goal_event(
                "issues_synced",
                created=report.created_count,
                updated=report.updated_count,
                failed=len(report.failures),
            )
            logger.info(
                f"GitHub sync completed: {report.created_count} created, "
                f"{report.updated_count} updated, {len(report.failures)} failed"
            )
            return CommandResult.ok(
                f"Sync completed: {report.created_count} goals created, {report.updated_count} updated"
                + (f", {len(report.failures)} failed" if report.failures else ""),
                **report.to_dict(),
            )
        except DevAgentError as e:
            return self._failure("sync_from_issue_tracker", "Failed to sync from GitHub", e)

    @log_performance("sync_goal_to_issue_tracker")
    def sync_goal_to_issue_tracker(self, goal_id: str) -> CommandResult:
        """Push a goal's status to its linked issue as milestone plus open/closed state."""
        logger.info(f"Syncing goal {goal_id} to GitHub")
        try:
            settings = self._settings()
            goal = self._require_goal(goal_id, settings)
            if goal.external_issue_id is None:
                return CommandResult.ok(
                    f"Goal {goal.id} is not linked to an issue; nothing to sync",
                    goal_id=goal.id,
                    synced=False,
                )

            tracker = self._tracker(settings)
            milestone = goal.status.milestone_title
            state = goal.status.issue_state
            with log_operation("sync_goal_to_issue_tracker", goal_id=goal.id, issue=goal.external_issue_id):
                tracker.update_issue_milestone(goal.external_issue_id, milestone)
                tracker.update_issue_state(goal.external_issue_id, state)

            observability_hooks.log_goal_event(
                "goal_synced",
                goal_id=goal.id,
                issue_number=goal.external_issue_id,
                milestone=milestone,
                state=state,
            )
            return CommandResult.ok(
                f"Goal {goal.id} synced to GitHub successfully",
                goal_id=goal.id,
                issue_number=goal.external_issue_id,
                milestone=milestone,
                state=state,
                synced=True,
            )
        except DevAgentError as e:
            return self._failure("sync_goal_to_issue_tracker", f"Failed to sync goal {goal_id} to GitHub", e, goal_id=goal_id)

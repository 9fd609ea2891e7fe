"""Business-rule validation for goals.

Every rule looks at one candidate goal against the full set of stored
goals (and, where available, the working tree) and reports a single
:class:`ValidationResult`. Rules never raise for a rule violation and
never write anything; the workflow decides what an error means.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .errors import GitError
from .models import Goal, GoalStatus, Severity, ValidationResult, ValidationSummary
from .ports import VersionControl

logger = logging.getLogger("devagent.validation")

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 100
DESCRIPTION_MIN_LENGTH = 10
DEFAULT_IN_PROGRESS_LIMIT = 3

ACTION_VERBS = ("add", "implement", "create", "fix", "update", "remove", "refactor", "optimize")
_ACTION_VERB = re.compile(r"\b(" + "|".join(ACTION_VERBS) + r")(?:s|es|d|ed|ing)?\b", re.IGNORECASE)
ACCEPTANCE_MARKERS = ("acceptance criteria", "- [ ]", "* [ ]", "1.", "should")


@dataclass(slots=True)
class ValidationContext:
    """Snapshot of the state a goal is validated against."""

    all_goals: List[Goal] = field(default_factory=list)
    current_branch: Optional[str] = None
    is_working_tree_clean: Optional[bool] = None

    def others(self, goal: Goal) -> List[Goal]:
        return [g for g in self.all_goals if g.id != goal.id]

    def existing(self, goal: Goal) -> Optional[Goal]:
        return next((g for g in self.all_goals if g.id == goal.id), None)


@dataclass(frozen=True, slots=True)
class ValidationRule:
    name: str
    description: str
    check: Callable[[Goal, ValidationContext], ValidationResult]


def _passed(rule: str) -> ValidationResult:
    return ValidationResult(rule=rule, valid=True, severity=Severity.INFO)


class ValidationService:
    """Runs the ordered rule set over candidate goals."""

    def __init__(
        self,
        storage,
        vcs: Optional[VersionControl] = None,
        *,
        in_progress_limit: int = DEFAULT_IN_PROGRESS_LIMIT,
    ):
        self.storage = storage
        self.vcs = vcs
        self.in_progress_limit = in_progress_limit
        self.rules: List[ValidationRule] = [
            ValidationRule("unique-title", "Goal titles should be unique", self._unique_title),
            ValidationRule("title-format", "Goal titles should follow proper format", self._title_format),
            ValidationRule("status-transition", "Goal status transitions should be logical", self._status_transition),
            ValidationRule("branch-consistency", "Goals with branches should have consistent states", self._branch_consistency),
            ValidationRule("in-progress-limit", "Limit number of goals in progress", self._in_progress_limit),
            ValidationRule("external-issue-uniqueness", "Each issue links to at most one goal", self._external_issue_uniqueness),
            ValidationRule("description-quality", "Goal descriptions should be meaningful", self._description_quality),
        ]

    def build_context(self) -> ValidationContext:
        """Read the current goal set and, if a repository is reachable, the working tree."""
        context = ValidationContext(all_goals=self.storage.list_goals())
        if self.vcs is None:
            return context
        try:
            context.current_branch = self.vcs.current_branch()
            context.is_working_tree_clean = self.vcs.is_working_tree_clean()
        except GitError as e:
            logger.debug(f"Git state unavailable while building validation context: {e}")
        return context

    def validate(self, goal: Goal, context: Optional[ValidationContext] = None) -> List[ValidationResult]:
        """Return one result per rule, in rule order."""
        if context is None:
            context = self.build_context()

        results: List[ValidationResult] = []
        for rule in self.rules:
            try:
                results.append(rule.check(goal, context))
            except Exception as e:
                logger.error(f"Validation rule {rule.name} failed: {e}", exc_info=True)
                results.append(ValidationResult(
                    rule=rule.name,
                    valid=False,
                    severity=Severity.ERROR,
                    message=f"Validation rule {rule.name} failed: {e}",
                ))
        return results

    def validate_creation(self, goal: Goal, context: Optional[ValidationContext] = None) -> List[ValidationResult]:
        """Validate a goal that is not stored yet."""
        if context is None:
            context = self.build_context()
        context = ValidationContext(
            all_goals=context.others(goal),
            current_branch=context.current_branch,
            is_working_tree_clean=context.is_working_tree_clean,
        )
        return self.validate(goal, context)

    @staticmethod
    def summarize(results: List[ValidationResult]) -> ValidationSummary:
        return ValidationSummary.from_results(results)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _unique_title(self, goal: Goal, context: ValidationContext) -> ValidationResult:
        title = goal.title.strip().lower()
        duplicate = next((g for g in context.others(goal) if g.title.strip().lower() == title), None)
        if duplicate is not None:
            return ValidationResult(
                rule="unique-title",
                valid=False,
                severity=Severity.ERROR,
                message=f'Goal title "{goal.title}" is already used by goal {duplicate.id}',
                suggestion="Choose a unique title or modify the existing goal",
            )
        return _passed("unique-title")

    def _title_format(self, goal: Goal, context: ValidationContext) -> ValidationResult:
        title = goal.title.strip()

        if len(title) < TITLE_MIN_LENGTH:
            return ValidationResult(
                rule="title-format",
                valid=False,
                severity=Severity.ERROR,
                message=f"Goal title is too short (minimum {TITLE_MIN_LENGTH} characters)",
                suggestion="Provide a more descriptive title",
            )
        if len(title) > TITLE_MAX_LENGTH:
            return ValidationResult(
                rule="title-format",
                valid=False,
                severity=Severity.ERROR,
                message=f"Goal title is too long (maximum {TITLE_MAX_LENGTH} characters)",
                suggestion="Shorten the title or move details to description",
            )
        if title[0] != title[0].upper():
            return ValidationResult(
                rule="title-format",
                valid=True,
                severity=Severity.WARNING,
                message="Goal title should start with a capital letter",
                suggestion="Consider capitalizing the first letter",
            )
        if not _ACTION_VERB.search(title):
            return ValidationResult(
                rule="title-format",
                valid=True,
                severity=Severity.WARNING,
                message="Goal title should contain an action word (add, implement, fix, etc.)",
                suggestion="Start with an action verb to clarify what needs to be done",
            )
        return _passed("title-format")

    def _status_transition(self, goal: Goal, context: ValidationContext) -> ValidationResult:
        existing = context.existing(goal)

        if existing is None:
            if goal.status is not GoalStatus.TODO:
                return ValidationResult(
                    rule="status-transition",
                    valid=False,
                    severity=Severity.ERROR,
                    message='New goals must start with "todo" status',
                    suggestion='Set status to "todo" for new goals',
                )
            return _passed("status-transition")

        if existing.status is goal.status or existing.status.can_transition_to(goal.status):
            return _passed("status-transition")

        allowed = ", ".join(s.value for s in existing.status.allowed_transitions)
        return ValidationResult(
            rule="status-transition",
            valid=False,
            severity=Severity.ERROR,
            message=f'Invalid status transition from "{existing.status.value}" to "{goal.status.value}"',
            suggestion=f'Allowed transitions from "{existing.status.value}": {allowed}',
        )

    def _branch_consistency(self, goal: Goal, context: ValidationContext) -> ValidationResult:
        if goal.branch_name and goal.status is not GoalStatus.IN_PROGRESS:
            return ValidationResult(
                rule="branch-consistency",
                valid=False,
                severity=Severity.ERROR,
                message=f'Goal has branch "{goal.branch_name}" but status is "{goal.status.value}"',
                suggestion='Goals with branches should be in "in_progress" status',
            )
        if goal.status is GoalStatus.IN_PROGRESS and not goal.branch_name:
            return ValidationResult(
                rule="branch-consistency",
                valid=True,
                severity=Severity.WARNING,
                message="Goal is in progress but has no associated branch",
                suggestion="Consider creating a feature branch for this goal",
            )
        return _passed("branch-consistency")

    def _in_progress_limit(self, goal: Goal, context: ValidationContext) -> ValidationResult:
        if goal.status is not GoalStatus.IN_PROGRESS:
            return _passed("in-progress-limit")

        active = [g for g in context.others(goal) if g.status is GoalStatus.IN_PROGRESS]
        if len(active) >= self.in_progress_limit:
            return ValidationResult(
                rule="in-progress-limit",
                valid=True,
                severity=Severity.WARNING,
                message=f"You have {len(active)} goals in progress. Consider focusing on fewer goals.",
                suggestion="Complete or pause some goals before starting new ones",
            )
        return _passed("in-progress-limit")

    def _external_issue_uniqueness(self, goal: Goal, context: ValidationContext) -> ValidationResult:
        if goal.external_issue_id is None:
            return _passed("external-issue-uniqueness")

        duplicate = next(
            (g for g in context.others(goal) if g.external_issue_id == goal.external_issue_id),
            None,
        )
        if duplicate is not None:
            return ValidationResult(
                rule="external-issue-uniqueness",
                valid=False,
                severity=Severity.ERROR,
                message=f"Issue #{goal.external_issue_id} is already linked to goal {duplicate.id}",
                suggestion="Each issue should be linked to only one goal",
            )
        return _passed("external-issue-uniqueness")

    def _description_quality(self, goal: Goal, context: ValidationContext) -> ValidationResult:
        description = (goal.description or "").strip()

        if not description:
            return ValidationResult(
                rule="description-quality",
                valid=True,
                severity=Severity.WARNING,
                message="Goal has no description",
                suggestion="Consider adding a description to clarify the goal requirements",
            )
        if len(description) < DESCRIPTION_MIN_LENGTH:
            return ValidationResult(
                rule="description-quality",
                valid=True,
                severity=Severity.WARNING,
                message="Goal description is very short",
                suggestion="Provide more details about what needs to be accomplished",
            )

        lowered = description.lower()
        if not any(marker in lowered for marker in ACCEPTANCE_MARKERS):
            return ValidationResult(
                rule="description-quality",
                valid=True,
                severity=Severity.INFO,
                message="Goal description lacks clear acceptance criteria",
                suggestion="Consider adding acceptance criteria or a checklist",
            )
        return _passed("description-quality")

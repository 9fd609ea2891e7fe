"""Data models for Dev Agent goal tracking.

This module contains the core data structures used throughout the system:
goals and their lifecycle states, configuration entries, validation
findings, the command result returned by every workflow operation, and
the issue-tracker records that goals are synced against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


def utc_now() -> str:
    """Current UTC time as a fixed-width, lexically sortable ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class GoalStatus(str, Enum):
    """Lifecycle state of a goal."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ARCHIVED = "archived"

    @classmethod
    def parse(cls, value: "GoalStatus | str") -> "GoalStatus":
        """Parse a status string; unknown values raise ValueError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid status {value!r}. Valid statuses: {valid}") from None

    @property
    def allowed_transitions(self) -> List["GoalStatus"]:
        return list(_TRANSITIONS[self])

    def can_transition_to(self, other: "GoalStatus") -> bool:
        return other in _TRANSITIONS[self]

    @property
    def milestone_title(self) -> str:
        """Issue-tracker milestone that mirrors this status."""
        return _MILESTONES[self]

    @property
    def issue_state(self) -> str:
        return "closed" if self in (GoalStatus.DONE, GoalStatus.ARCHIVED) else "open"


_TRANSITIONS = {
    GoalStatus.TODO: (GoalStatus.IN_PROGRESS, GoalStatus.ARCHIVED),
    GoalStatus.IN_PROGRESS: (GoalStatus.DONE, GoalStatus.TODO, GoalStatus.ARCHIVED),
    GoalStatus.DONE: (GoalStatus.ARCHIVED, GoalStatus.TODO),
    GoalStatus.ARCHIVED: (GoalStatus.TODO,),
}

# done and archived collapse onto the same milestone
_MILESTONES = {
    GoalStatus.TODO: "Todo",
    GoalStatus.IN_PROGRESS: "In Progress",
    GoalStatus.DONE: "Done",
    GoalStatus.ARCHIVED: "Done",
}


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(slots=True)
class Goal:
    """A unit of development work tracked from creation to archival."""

    id: str
    title: str
    status: GoalStatus = GoalStatus.TODO
    description: Optional[str] = None
    branch_name: Optional[str] = None
    external_issue_id: Optional[int] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "description": self.description,
            "branch_name": self.branch_name,
            "external_issue_id": self.external_issue_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Goal":
        """Create from a dictionary or a database row."""
        return cls(
            id=data["id"],
            title=data["title"],
            status=GoalStatus.parse(data["status"]),
            description=data["description"] if "description" in data.keys() else None,
            branch_name=data["branch_name"] if "branch_name" in data.keys() else None,
            external_issue_id=data["external_issue_id"] if "external_issue_id" in data.keys() else None,
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            completed_at=data["completed_at"] if "completed_at" in data.keys() else None,
        )

    def with_changes(self, **changes: Any) -> "Goal":
        """Return a copy with ``changes`` applied (used to validate candidates)."""
        data = self.to_dict()
        data.update({k: (v.value if isinstance(v, GoalStatus) else v) for k, v in changes.items()})
        return Goal.from_dict(data)


@dataclass(slots=True)
class ConfigEntry:
    """A repository-level setting."""

    key: str
    value: str
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"key": self.key, "value": self.value, "updated_at": self.updated_at}


@dataclass(slots=True)
class ValidationResult:
    """Outcome of one validation rule for one goal."""

    rule: str
    valid: bool
    severity: Severity = Severity.INFO
    message: Optional[str] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "valid": self.valid,
            "severity": self.severity.value,
            "message": self.message,
            "suggestion": self.suggestion,
        }

    @property
    def is_error(self) -> bool:
        return not self.valid and self.severity is Severity.ERROR


@dataclass(slots=True)
class ValidationSummary:
    """Findings grouped by severity; valid iff there are no errors."""

    valid: bool
    errors: List[ValidationResult] = field(default_factory=list)
    warnings: List[ValidationResult] = field(default_factory=list)
    info: List[ValidationResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[ValidationResult]) -> "ValidationSummary":
        errors = [r for r in results if r.is_error]
        warnings = [r for r in results if r.severity is Severity.WARNING]
        info = [r for r in results if r.severity is Severity.INFO and r.message]
        return cls(valid=not errors, errors=errors, warnings=warnings, info=info)

    def error_messages(self) -> List[str]:
        return [r.message or r.rule for r in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [r.to_dict() for r in self.errors],
            "warnings": [r.to_dict() for r in self.warnings],
            "info": [r.to_dict() for r in self.info],
        }


@dataclass(slots=True)
class CommandResult:
    """Structured outcome returned by every workflow operation."""

    success: bool
    message: str
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, message: str, **data: Any) -> "CommandResult":
        return cls(success=True, message=message, data=data or None)

    @classmethod
    def fail(cls, message: str, error: str, **data: Any) -> "CommandResult":
        return cls(success=False, message=message, error=error, data=data or None)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error is not None:
            result["error"] = self.error
        if self.data is not None:
            result["data"] = self.data
        return result


# ----------------------------------------------------------------------
# Issue tracker records
# ----------------------------------------------------------------------


@dataclass(slots=True)
class Milestone:
    id: int
    title: str
    state: str = "open"
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Milestone":
        return cls(
            id=data["id"],
            title=data["title"],
            state=data.get("state", "open"),
            description=data.get("description") or None,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "state": self.state,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class Issue:
    """An issue as reported by the tracker (pull requests excluded)."""

    number: int
    title: str
    state: str = "open"
    body: Optional[str] = None
    milestone: Optional[Milestone] = None
    labels: List[str] = field(default_factory=list)
    assignee: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Issue":
        labels = []
        for label in data.get("labels") or []:
            labels.append(label if isinstance(label, str) else label.get("name", ""))
        assignee = data.get("assignee")
        milestone = data.get("milestone")
        return cls(
            number=data["number"],
            title=data["title"],
            state=data.get("state", "open"),
            body=data.get("body") or None,
            milestone=Milestone.from_api(milestone) if milestone else None,
            labels=labels,
            assignee=assignee.get("login") if assignee else None,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def has_open_todo_milestone(self) -> bool:
        return (
            self.milestone is not None
            and self.milestone.title.lower() == "todo"
            and self.milestone.state == "open"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "state": self.state,
            "body": self.body,
            "milestone": self.milestone.to_dict() if self.milestone else None,
            "labels": list(self.labels),
            "assignee": self.assignee,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ----------------------------------------------------------------------
# Version control and sync reports
# ----------------------------------------------------------------------


@dataclass(slots=True)
class GitStatus:
    branch: Optional[str] = None
    ahead_count: int = 0
    behind_count: int = 0
    changed_files: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.changed_files

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch": self.branch,
            "ahead_count": self.ahead_count,
            "behind_count": self.behind_count,
            "changed_files": list(self.changed_files),
            "is_clean": self.is_clean,
        }


@dataclass(slots=True)
class SyncFailure:
    issue_number: int
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"issue_number": self.issue_number, "error": self.error}


@dataclass(slots=True)
class SyncOutcome:
    """Result of syncing a single issue: ``created``, ``updated`` or ``unchanged``."""

    issue_number: int
    goal_id: str
    action: str


@dataclass(slots=True)
class SyncReport:
    """Complete successes/failures pair produced by an issue sync."""

    successes: List[SyncOutcome] = field(default_factory=list)
    failures: List[SyncFailure] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Iterable["SyncOutcome | SyncFailure"]) -> "SyncReport":
        report = cls()
        for result in results:
            if isinstance(result, SyncFailure):
                report.failures.append(result)
            else:
                report.successes.append(result)
        return report

    @property
    def created_count(self) -> int:
        return sum(1 for s in self.successes if s.action == "created")

    @property
    def updated_count(self) -> int:
        return sum(1 for s in self.successes if s.action == "updated")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "created": [s.goal_id for s in self.successes if s.action == "created"],
            "updated": [s.goal_id for s in self.successes if s.action == "updated"],
            "errors": [f.to_dict() for f in self.failures],
        }

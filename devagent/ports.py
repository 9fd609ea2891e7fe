"""Interfaces the workflow depends on for external systems."""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from .models import GitStatus, Issue, Milestone


@runtime_checkable
class VersionControl(Protocol):
    """Live working-directory state; implementations must not cache."""

    def is_repository(self) -> bool: ...

    def current_branch(self) -> str: ...

    def is_working_tree_clean(self) -> bool: ...

    def branch_exists(self, name: str) -> bool: ...

    def create_branch(self, name: str) -> None: ...

    def checkout(self, name: str) -> None: ...

    def pull(self, remote: str, branch: str) -> None: ...

    def push(self, remote: str, branch: str, force_with_lease: bool = False) -> None: ...

    def status(self) -> GitStatus: ...


@runtime_checkable
class IssueTracker(Protocol):
    def fetch_open_todo_issues(self) -> List[Issue]: ...

    def fetch_milestones(self, state: str = "open") -> List[Milestone]: ...

    def update_issue_milestone(self, issue_number: int, milestone_title: str) -> None: ...

    def update_issue_state(self, issue_number: int, state: str) -> None: ...

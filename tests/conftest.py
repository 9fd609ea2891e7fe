"""Shared fixtures and in-memory port doubles for the Dev Agent tests."""

from typing import Dict, List, Optional

import pytest

from devagent.errors import BranchAlreadyExists, BranchNotFound, MilestoneNotFound
from devagent.models import GitStatus, Issue, Milestone
from devagent.storage import StorageService


class FakeVersionControl:
    """Version-control port double that records every call."""

    def __init__(self, branch: str = "develop", clean: bool = True, repository: bool = True):
        self.branch = branch
        self.clean = clean
        self.repository = repository
        self.branches = {"main", "develop"}
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise self.fail_on[name]

    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in {"create_branch", "checkout", "pull", "push"}]

    def is_repository(self) -> bool:
        self._record("is_repository")
        return self.repository

    def current_branch(self) -> str:
        self._record("current_branch")
        return self.branch

    def is_working_tree_clean(self) -> bool:
        self._record("is_working_tree_clean")
        return self.clean

    def branch_exists(self, name: str) -> bool:
        self._record("branch_exists", name)
        return name in self.branches

    def create_branch(self, name: str) -> None:
        self._record("create_branch", name)
        if name in self.branches:
            raise BranchAlreadyExists(name)
        self.branches.add(name)
        self.branch = name

    def checkout(self, name: str) -> None:
        self._record("checkout", name)
        if name not in self.branches:
            raise BranchNotFound(name)
        self.branch = name

    def pull(self, remote: str, branch: str) -> None:
        self._record("pull", remote, branch)

    def push(self, remote: str, branch: str, force_with_lease: bool = False) -> None:
        self._record("push", remote, branch, force_with_lease)

    def status(self) -> GitStatus:
        self._record("status")
        return GitStatus(branch=self.branch, changed_files=[] if self.clean else ["README.md"])


class FakeIssueTracker:
    """Issue-tracker port double holding issues and milestones in memory."""

    def __init__(self, issues: Optional[List[Issue]] = None):
        self.issues = list(issues or [])
        self.milestones = [
            Milestone(id=1, title="Todo"),
            Milestone(id=2, title="In Progress"),
            Milestone(id=3, title="Done"),
        ]
        self.milestone_updates: List[tuple] = []
        self.state_updates: List[tuple] = []

    def fetch_open_todo_issues(self) -> List[Issue]:
        return [i for i in self.issues if i.state == "open" and i.has_open_todo_milestone()]

    def fetch_milestones(self, state: str = "open") -> List[Milestone]:
        return [m for m in self.milestones if state == "all" or m.state == state]

    def update_issue_milestone(self, issue_number: int, milestone_title: str) -> None:
        if not any(m.title == milestone_title for m in self.milestones):
            raise MilestoneNotFound(milestone_title)
        self.milestone_updates.append((issue_number, milestone_title))

    def update_issue_state(self, issue_number: int, state: str) -> None:
        self.state_updates.append((issue_number, state))


def make_issue(number: int, title: str, body: Optional[str] = None, milestone: str = "Todo") -> Issue:
    return Issue(
        number=number,
        title=title,
        body=body,
        milestone=Milestone(id=1, title=milestone),
        created_at="2024-01-01T00:00:00Z",
        updated_at="2024-01-01T00:00:00Z",
    )


@pytest.fixture
def storage(tmp_path):
    """An initialized storage service backed by a temporary database."""
    service = StorageService(tmp_path / ".dev-agent.db")
    service.initialize()
    yield service
    service.close()


@pytest.fixture
def vcs():
    return FakeVersionControl()


@pytest.fixture
def tracker():
    return FakeIssueTracker()


@pytest.fixture
def issue_factory():
    return make_issue

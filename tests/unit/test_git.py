"""Unit tests for the git subprocess wrapper."""

import subprocess
from unittest.mock import patch

import pytest

from devagent.errors import (
    BranchAlreadyExists,
    BranchNotFound,
    GitError,
    MergeConflict,
    NetworkError,
    NotARepository,
)
from devagent.git import GitService, parse_porcelain_status


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def git(tmp_path):
    return GitService(tmp_path)


class TestParsePorcelainStatus:
    """Test cases for porcelain status parsing."""

    def test_branch_with_tracking(self):
        status = parse_porcelain_status("## feature/x...origin/feature/x [ahead 2, behind 1]\n")
        assert status.branch == "feature/x"
        assert status.ahead_count == 2
        assert status.behind_count == 1
        assert status.is_clean

    def test_branch_without_upstream(self):
        status = parse_porcelain_status("## develop\n")
        assert status.branch == "develop"
        assert status.ahead_count == 0
        assert status.behind_count == 0

    def test_only_behind(self):
        status = parse_porcelain_status("## main...origin/main [behind 3]\n")
        assert status.ahead_count == 0
        assert status.behind_count == 3

    def test_changed_files(self):
        output = (
            "## main...origin/main\n"
            " M src/app.py\n"
            "A  new.py\n"
            "R  old.py -> renamed.py\n"
            "?? notes.txt\n"
        )
        status = parse_porcelain_status(output)
        assert status.changed_files == ["src/app.py", "new.py", "renamed.py", "notes.txt"]
        assert not status.is_clean

    def test_fresh_repository(self):
        assert parse_porcelain_status("## No commits yet on main\n").branch == "main"

    def test_detached_head(self):
        assert parse_porcelain_status("## HEAD (no branch)\n").branch is None


class TestQueries:
    """Test cases for read-only git queries."""

    def test_is_repository(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(stdout="true\n")) as run:
            assert git.is_repository()
        args, kwargs = run.call_args
        assert args[0] == ["git", "rev-parse", "--is-inside-work-tree"]
        assert kwargs["cwd"] == git.root

    def test_not_a_repository(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(128, stderr="fatal: not a git repository")):
            assert not git.is_repository()

    def test_missing_git_executable(self, git):
        with patch("devagent.git.subprocess.run", side_effect=FileNotFoundError("git")):
            assert not git.is_repository()
            with pytest.raises(GitError, match="not found"):
                git.is_working_tree_clean()

    def test_current_branch(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(stdout="develop\n")):
            assert git.current_branch() == "develop"

    def test_current_branch_outside_repository(self, git):
        responses = [_completed(128, stderr="fatal: not a git repository"), _completed(128)]
        with patch("devagent.git.subprocess.run", side_effect=responses):
            with pytest.raises(NotARepository):
                git.current_branch()

    def test_working_tree_clean(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(stdout="")):
            assert git.is_working_tree_clean()
        with patch("devagent.git.subprocess.run", return_value=_completed(stdout=" M file.py\n")):
            assert not git.is_working_tree_clean()

    def test_branch_exists(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(0)) as run:
            assert git.branch_exists("develop")
        assert run.call_args[0][0][-1] == "refs/heads/develop"
        with patch("devagent.git.subprocess.run", return_value=_completed(1)):
            assert not git.branch_exists("nope")

    def test_status(self, git):
        output = "## develop...origin/develop [ahead 1]\n M a.py\n"
        with patch("devagent.git.subprocess.run", return_value=_completed(stdout=output)):
            status = git.status()
        assert status.branch == "develop"
        assert status.ahead_count == 1
        assert status.changed_files == ["a.py"]


class TestMutations:
    """Test cases for branch and remote operations."""

    def test_create_branch(self, git):
        responses = [_completed(1), _completed(0)]
        with patch("devagent.git.subprocess.run", side_effect=responses) as run:
            git.create_branch("feature/g-abc123-x")
        assert run.call_args[0][0] == ["git", "checkout", "-b", "feature/g-abc123-x"]

    def test_create_existing_branch(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(0)) as run:
            with pytest.raises(BranchAlreadyExists):
                git.create_branch("develop")
        assert run.call_count == 1

    def test_checkout_missing_branch(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(1)):
            with pytest.raises(BranchNotFound):
                git.checkout("nope")

    def test_checkout(self, git):
        with patch("devagent.git.subprocess.run", side_effect=[_completed(0), _completed(0)]) as run:
            git.checkout("develop")
        assert run.call_args[0][0] == ["git", "checkout", "develop"]

    def test_pull_network_error(self, git):
        failure = _completed(1, stderr="fatal: unable to access 'https://example.com/': Could not resolve host")
        with patch("devagent.git.subprocess.run", return_value=failure):
            with pytest.raises(NetworkError):
                git.pull("origin", "develop")

    def test_pull_merge_conflict(self, git):
        failure = _completed(1, stdout="CONFLICT (content): Merge conflict in app.py\n")
        with patch("devagent.git.subprocess.run", return_value=failure):
            with pytest.raises(MergeConflict):
                git.pull("origin", "develop")

    def test_pull_other_failure(self, git):
        failure = _completed(1, stderr="fatal: couldn't find remote ref develop")
        with patch("devagent.git.subprocess.run", return_value=failure):
            with pytest.raises(GitError) as exc_info:
                git.pull("origin", "develop")
        assert type(exc_info.value) is GitError

    def test_push_force_with_lease(self, git):
        with patch("devagent.git.subprocess.run", return_value=_completed(0)) as run:
            git.push("origin", "feature/x", force_with_lease=True)
        assert run.call_args[0][0] == ["git", "push", "--force-with-lease", "origin", "feature/x"]

"""Git working-directory operations.

Every call shells out to ``git`` in the project root, so results always
reflect the current state of the working tree.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import List, Union

from .errors import (
    BranchAlreadyExists,
    BranchNotFound,
    GitError,
    MergeConflict,
    NetworkError,
    NotARepository,
)
from .models import GitStatus

logger = logging.getLogger("devagent.git")

_NETWORK_MARKERS = (
    "could not resolve host",
    "could not read from remote repository",
    "unable to access",
    "connection timed out",
    "connection refused",
    "network is unreachable",
)
_CONFLICT_MARKERS = ("conflict", "merge conflict", "not possible to fast-forward")
_BRANCH_HEADER = re.compile(
    r"^## (?P<branch>.+?)(?:\.\.\.(?P<upstream>\S+))?(?: \[(?P<tracking>[^\]]+)\])?$"
)


class GitService:
    """Version-control port backed by the ``git`` executable."""

    def __init__(self, root: Union[str, Path] = ".", *, executable: str = "git"):
        self.root = Path(root).resolve()
        self.executable = executable

    def _run(self, args: List[str], *, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the project root."""
        command = [self.executable, *args]
        logger.debug(f"Running: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                cwd=self.root,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as e:
            raise GitError(f"git executable '{self.executable}' not found") from e
        except OSError as e:
            raise GitError(f"Failed to run git {' '.join(args)}: {e}") from e

        if check and result.returncode != 0:
            raise GitError(
                f"git {' '.join(args)} failed: {result.stderr.strip() or result.stdout.strip()}",
                stderr=result.stderr,
                returncode=result.returncode,
            )
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        try:
            result = self._run(["rev-parse", "--is-inside-work-tree"], check=False)
        except GitError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def _require_repository(self) -> None:
        if not self.is_repository():
            raise NotARepository(f"{self.root} is not a Git repository")

    def current_branch(self) -> str:
        result = self._run(["branch", "--show-current"], check=False)
        if result.returncode != 0:
            self._require_repository()
            raise GitError(f"Unable to determine current branch: {result.stderr.strip()}")
        return result.stdout.strip()

    def is_working_tree_clean(self) -> bool:
        # untracked files (the goal database among them) do not block a checkout
        return not self._run(["status", "--porcelain", "--untracked-files=no"]).stdout.strip()

    def branch_exists(self, name: str) -> bool:
        result = self._run(["rev-parse", "--verify", "--quiet", f"refs/heads/{name}"], check=False)
        return result.returncode == 0

    def status(self) -> GitStatus:
        """Current branch, ahead/behind counts against upstream and changed files."""
        output = self._run(["status", "--porcelain=v1", "--branch"]).stdout
        return parse_porcelain_status(output)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_branch(self, name: str) -> None:
        """Create ``name`` from HEAD and check it out."""
        if self.branch_exists(name):
            raise BranchAlreadyExists(name)
        self._run(["checkout", "-b", name])
        logger.info(f"Created and switched to branch {name}")

    def checkout(self, name: str) -> None:
        if not self.branch_exists(name):
            raise BranchNotFound(name)
        self._run(["checkout", name])
        logger.info(f"Switched to branch {name}")

    def pull(self, remote: str, branch: str) -> None:
        result = self._run(["pull", remote, branch], check=False)
        if result.returncode != 0:
            raise _classify_remote_failure(f"git pull {remote} {branch}", result)
        logger.info(f"Pulled {remote}/{branch}")

    def push(self, remote: str, branch: str, force_with_lease: bool = False) -> None:
        args = ["push", remote, branch]
        if force_with_lease:
            args.insert(1, "--force-with-lease")
        result = self._run(args, check=False)
        if result.returncode != 0:
            raise _classify_remote_failure(f"git {' '.join(args)}", result)
        logger.info(f"Pushed {branch} to {remote}")


def _classify_remote_failure(command: str, result: subprocess.CompletedProcess) -> GitError | NetworkError:
    output = f"{result.stdout}\n{result.stderr}"
    lowered = output.lower()
    detail = result.stderr.strip() or result.stdout.strip()
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return NetworkError(f"{command} failed: {detail}")
    if any(marker in lowered for marker in _CONFLICT_MARKERS):
        return MergeConflict(f"{command} failed: {detail}", stderr=result.stderr, returncode=result.returncode)
    return GitError(f"{command} failed: {detail}", stderr=result.stderr, returncode=result.returncode)


def parse_porcelain_status(output: str) -> GitStatus:
    """Parse ``git status --porcelain=v1 --branch`` output."""
    status = GitStatus()
    for line in output.splitlines():
        if not line.strip():
            continue
        if line.startswith("## "):
            match = _BRANCH_HEADER.match(line)
            if not match:
                continue
            branch = match.group("branch")
            if branch.startswith("No commits yet on "):
                branch = branch[len("No commits yet on "):]
            elif branch.startswith("HEAD (no branch)"):
                branch = None
            status.branch = branch
            tracking = match.group("tracking") or ""
            ahead = re.search(r"ahead (\d+)", tracking)
            behind = re.search(r"behind (\d+)", tracking)
            status.ahead_count = int(ahead.group(1)) if ahead else 0
            status.behind_count = int(behind.group(1)) if behind else 0
            continue
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        status.changed_files.append(path.strip('"'))
    return status

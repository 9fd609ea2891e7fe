"""GitHub Issues client used to sync goals with a repository's issues.

Goals are mirrored onto issues through milestones: only open issues in
an open "Todo" milestone are pulled in, and goal status changes are
pushed back as milestone and open/closed state updates.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from .errors import IssueTrackerError, IssueTrackerNotConfigured, MilestoneNotFound, NetworkError
from .models import Issue, Milestone

logger = logging.getLogger("devagent.github")

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "dev-agent/2.0.0"
PER_PAGE = 100


class GitHubService:
    """Issue-tracker port backed by the GitHub REST API.

    Transport errors and 5xx responses are retried ``retries`` times with
    a linear backoff; anything else is raised straight away.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        *,
        client: Optional[httpx.Client] = None,
        retries: int = 2,
        backoff: float = 0.2,
        timeout: float = 30.0,
    ):
        if not owner or not repo:
            raise IssueTrackerNotConfigured(
                "GitHub repository not configured. Please set github.owner and github.repo"
            )
        self.owner = owner
        self.repo = repo
        self.retries = max(0, retries)
        self.backoff = backoff

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("GitHub token not provided. GitHub integration will be limited.")

        if client is None:
            client = httpx.Client(base_url=GITHUB_API_URL, headers=headers, timeout=timeout)
        else:
            client.headers.update(headers)
        self._client = client

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"GitHub {method} {path} failed (attempt {attempt + 1}): {e}")
            except httpx.HTTPError as e:
                raise IssueTrackerError(f"GitHub {method} {path} failed: {e}") from e
            else:
                if response.status_code < 500:
                    return self._handle_response(method, path, response)
                last_error = IssueTrackerError(
                    f"GitHub {method} {path} returned {response.status_code}",
                    status_code=response.status_code,
                )
                logger.warning(f"GitHub {method} {path} returned {response.status_code} (attempt {attempt + 1})")

            if attempt < self.retries and self.backoff:
                time.sleep(self.backoff * (attempt + 1))

        if isinstance(last_error, IssueTrackerError):
            raise last_error
        raise NetworkError(f"GitHub {method} {path} failed after {self.retries + 1} attempts: {last_error}")

    @staticmethod
    def _handle_response(method: str, path: str, response: httpx.Response) -> Any:
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except (ValueError, AttributeError):
                detail = response.text
            raise IssueTrackerError(
                f"GitHub {method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise IssueTrackerError(
                f"GitHub {method} {path} returned a non-JSON body ({response.headers.get('content-type', 'unknown')})",
                status_code=response.status_code,
            ) from e

    def _paginate(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = self._request("GET", path, params={**params, "per_page": PER_PAGE, "page": page})
            if not data:
                break
            items.extend(data)
            if len(data) < PER_PAGE:
                break
            page += 1
        return items

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate_connection(self) -> str:
        """Check credentials and repository access; returns the repo full name."""
        user = self._request("GET", "/user")
        logger.debug(f"Authenticated as GitHub user: {user.get('login')}")
        repo = self._request("GET", self.repo_path)
        logger.info(f"Repository access confirmed: {repo.get('full_name')}")
        return repo.get("full_name", f"{self.owner}/{self.repo}")

    def fetch_issues(self, state: str = "open") -> List[Issue]:
        """Fetch issues, excluding pull requests."""
        data = self._paginate(
            f"{self.repo_path}/issues",
            {"state": state, "sort": "updated", "direction": "desc"},
        )
        issues = [Issue.from_api(item) for item in data if "pull_request" not in item]
        logger.info(f"Fetched {len(issues)} {state} issues from GitHub")
        return issues

    def fetch_open_todo_issues(self) -> List[Issue]:
        """Open issues whose milestone is an open milestone titled "Todo"."""
        issues = [issue for issue in self.fetch_issues("open") if issue.has_open_todo_milestone()]
        logger.info(f"Fetched {len(issues)} TODO issues from GitHub")
        return issues

    def fetch_milestones(self, state: str = "open") -> List[Milestone]:
        data = self._paginate(
            f"{self.repo_path}/milestones",
            {"state": state, "sort": "due_on", "direction": "desc"},
        )
        return [Milestone.from_api(item) for item in data]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_issue_milestone(self, issue_number: int, milestone_title: str) -> None:
        milestone = next(
            (m for m in self.fetch_milestones("all") if m.title == milestone_title),
            None,
        )
        if milestone is None:
            raise MilestoneNotFound(milestone_title)

        self._request(
            "PATCH",
            f"{self.repo_path}/issues/{issue_number}",
            json={"milestone": milestone.id},
        )
        logger.info(f'Updated issue #{issue_number} milestone to "{milestone_title}"')

    def update_issue_state(self, issue_number: int, state: str) -> None:
        if state not in ("open", "closed"):
            raise ValueError(f"Issue state must be 'open' or 'closed', got {state!r}")
        self._request(
            "PATCH",
            f"{self.repo_path}/issues/{issue_number}",
            json={"state": state},
        )
        logger.info(f'Updated issue #{issue_number} state to "{state}"')

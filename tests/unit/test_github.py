"""Unit tests for the GitHub issue-tracker client.

Requests are served by ``httpx.MockTransport`` so no network is used.
"""

import json

import httpx
import pytest

from devagent.errors import (
    IssueTrackerError,
    IssueTrackerNotConfigured,
    MilestoneNotFound,
    NetworkError,
)
from devagent.github import GITHUB_API_URL, GitHubService
from devagent.workflow import WorkflowManager


def _issue(number, title, milestone=None, **extra):
    data = {
        "number": number,
        "title": title,
        "state": "open",
        "body": f"Body of {title}",
        "labels": [],
        "assignee": None,
        "milestone": milestone,
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
    }
    data.update(extra)
    return data


TODO = {"id": 10, "title": "Todo", "state": "open"}
IN_PROGRESS = {"id": 11, "title": "In Progress", "state": "open"}
DONE = {"id": 12, "title": "Done", "state": "closed"}


def _service(handler, **kwargs):
    client = httpx.Client(base_url=GITHUB_API_URL, transport=httpx.MockTransport(handler))
    kwargs.setdefault("backoff", 0)
    return GitHubService("acme", "widgets", "secret-token", client=client, **kwargs)


class TestConstruction:
    def test_requires_owner_and_repo(self):
        with pytest.raises(IssueTrackerNotConfigured):
            GitHubService("", "widgets")

    def test_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"login": "octocat", "full_name": "acme/widgets"})

        service = _service(handler)
        service.validate_connection()
        assert seen["authorization"] == "Bearer secret-token"
        assert seen["accept"] == "application/vnd.github+json"
        assert seen["x-github-api-version"] == "2022-11-28"


class TestFetchIssues:
    """Test cases for fetching and filtering issues."""

    def test_open_todo_issues_filtering(self):
        issues = [
            _issue(1, "Add search", TODO),
            _issue(2, "Fix crash", IN_PROGRESS),
            _issue(3, "Update docs", None),
            _issue(4, "Bump deps", TODO, pull_request={"url": "https://example.com"}),
            _issue(5, "Remove legacy", {"id": 13, "title": "todo", "state": "open"}),
            _issue(6, "Refactor core", {"id": 14, "title": "Todo", "state": "closed"}),
        ]

        def handler(request):
            assert request.url.path == "/repos/acme/widgets/issues"
            assert request.url.params["state"] == "open"
            return httpx.Response(200, json=issues)

        result = _service(handler).fetch_open_todo_issues()
        assert [i.number for i in result] == [1, 5]

    def test_pagination(self):
        pages = {
            "1": [_issue(n, f"Issue {n}") for n in range(1, 101)],
            "2": [_issue(101, "Issue 101")],
        }
        requested = []

        def handler(request):
            page = request.url.params["page"]
            requested.append(page)
            assert request.url.params["per_page"] == "100"
            return httpx.Response(200, json=pages[page])

        issues = _service(handler).fetch_issues("all")
        assert len(issues) == 101
        assert requested == ["1", "2"]

    def test_fetch_milestones(self):
        def handler(request):
            assert request.url.path == "/repos/acme/widgets/milestones"
            assert request.url.params["state"] == "all"
            return httpx.Response(200, json=[TODO, IN_PROGRESS, DONE])

        milestones = _service(handler).fetch_milestones("all")
        assert [m.title for m in milestones] == ["Todo", "In Progress", "Done"]


class TestUpdates:
    """Test cases for pushing goal state to issues."""

    def test_update_issue_milestone(self):
        patches = []

        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json=[TODO, IN_PROGRESS, DONE])
            patches.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json=_issue(7, "x"))

        _service(handler).update_issue_milestone(7, "Done")
        assert patches == [("/repos/acme/widgets/issues/7", {"milestone": 12})]

    def test_update_issue_milestone_not_found(self):
        def handler(request):
            assert request.method == "GET"
            return httpx.Response(200, json=[TODO])

        with pytest.raises(MilestoneNotFound):
            _service(handler).update_issue_milestone(7, "Done")

    def test_update_issue_state(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_issue(7, "x", state="closed"))

        _service(handler).update_issue_state(7, "closed")
        assert bodies == [{"state": "closed"}]

    def test_update_issue_state_rejects_unknown(self):
        with pytest.raises(ValueError):
            _service(lambda request: httpx.Response(200)).update_issue_state(7, "merged")


class TestErrorsAndRetries:
    """Test cases for error mapping and bounded retries."""

    def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(IssueTrackerError) as exc_info:
            _service(handler, retries=3).fetch_milestones()
        assert exc_info.value.status_code == 404
        assert "Not Found" in str(exc_info.value)
        assert len(calls) == 1

    def test_server_error_retried_then_succeeds(self):
        responses = [httpx.Response(502), httpx.Response(200, json=[TODO])]

        def handler(request):
            return responses.pop(0)

        milestones = _service(handler, retries=2).fetch_milestones()
        assert [m.title for m in milestones] == ["Todo"]

    def test_server_error_exhausts_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(IssueTrackerError) as exc_info:
            _service(handler, retries=2).fetch_milestones()
        assert exc_info.value.status_code == 503
        assert len(calls) == 3

    def test_transport_error_becomes_network_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            _service(handler, retries=1).fetch_open_todo_issues()
        assert len(calls) == 2

    def test_non_json_body_becomes_tracker_error(self):
        def handler(request):
            return httpx.Response(200, text="<html>proxy</html>", headers={"content-type": "text/html"})

        with pytest.raises(IssueTrackerError) as exc_info:
            _service(handler).fetch_open_todo_issues()
        assert "non-JSON" in str(exc_info.value)
        assert exc_info.value.status_code == 200

    def test_non_json_error_body_keeps_status(self):
        def handler(request):
            return httpx.Response(403, json=["rate", "limited"])

        with pytest.raises(IssueTrackerError) as exc_info:
            _service(handler).fetch_milestones()
        assert exc_info.value.status_code == 403

    def test_other_http_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.DecodingError("malformed gzip body", request=request)

        with pytest.raises(IssueTrackerError):
            _service(handler, retries=3).fetch_milestones()
        assert len(calls) == 1

    def test_sync_reports_bad_body_as_failure(self, storage, vcs):
        def handler(request):
            return httpx.Response(200, text="<html>proxy</html>", headers={"content-type": "text/html"})

        manager = WorkflowManager(storage, vcs, _service(handler))
        result = manager.sync_from_issue_tracker()

        assert not result.success
        assert result.error == "issue_tracker_error"
        assert "non-JSON" in result.message

"""GitHub API client wrapper"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import requests
from github import Auth, Github, GithubException

from app.services.errors import RemoteAPIError

logger = logging.getLogger(__name__)

# Timeline event kinds the status projector cares about.
EVENT_CONNECTED = "connected"
EVENT_CROSS_REFERENCED = "cross-referenced"
EVENT_DISCONNECTED = "disconnected"
EVENT_OTHER = "other"

_KNOWN_EVENTS = {EVENT_CONNECTED, EVENT_CROSS_REFERENCED, EVENT_DISCONNECTED}


@dataclass
class TimelineEvent:
    kind: str
    created_at: Any = None


@dataclass
class RemoteIssue:
    id: int
    number: int
    title: str
    body: str = ""
    state: str = "open"
    pull_request_url: Optional[str] = None
    timeline: List[TimelineEvent] = field(default_factory=list)


def _event_kind(name: Optional[str]) -> str:
    name = (name or "").lower()
    return name if name in _KNOWN_EVENTS else EVENT_OTHER


def to_remote_issue(issue: Any) -> RemoteIssue:
    """Convert a PyGithub Issue into a RemoteIssue."""
    pr = getattr(issue, "pull_request", None)
    pr_url = None
    if pr is not None:
        pr_url = getattr(pr, "html_url", None) or getattr(pr, "url", None) or ""
    return RemoteIssue(
        id=issue.id,
        number=issue.number,
        title=issue.title or "",
        body=issue.body or "",
        state=issue.state or "",
        pull_request_url=pr_url,
    )


class GitHubClient:
    """Wrapper for the GitHub issue operations the reconciler needs.

    Every failure is re-raised as `RemoteAPIError`. There is no retry or
    caching here; each call hits the API.
    """

    def __init__(self, access_token: str = "", base_url: str = "https://api.github.com"):
        """Initialize GitHub client"""
        self.base_url = base_url
        if access_token:
            self.gh = Github(auth=Auth.Token(access_token), base_url=base_url)
        else:
            logger.error("No GitHub token configured; API calls are unauthenticated and writes will fail")
            self.gh = Github(base_url=base_url)

    @staticmethod
    def _call(operation: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except GithubException as e:
            message = e.data.get("message") if isinstance(e.data, dict) else str(e.data)
            logger.error(f"GitHub {operation} failed: status {e.status}: {message}")
            raise RemoteAPIError(operation, message or str(e), status=e.status) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"GitHub {operation} failed: {e}")
            raise RemoteAPIError(operation, str(e)) from e

    def _repo(self, owner: str, repo: str):
        # lazy: no GET for the repository itself
        return self.gh.get_repo(f"{owner}/{repo}", lazy=True)

    def list_issues(self, owner: str, repo: str) -> List[RemoteIssue]:
        """Get all issues (open and closed) from a repository"""

        def _list():
            # Iterating the PaginatedList follows every page.
            return [to_remote_issue(i) for i in self._repo(owner, repo).get_issues(state="all")]

        issues = self._call(f"list issues {owner}/{repo}", _list)
        logger.debug(f"Fetched {len(issues)} issues from {owner}/{repo}")
        return issues

    def create_issue(self, owner: str, repo: str, title: str, body: str) -> RemoteIssue:
        """Create a new issue"""
        issue = self._call(
            f"create issue in {owner}/{repo}",
            lambda: self._repo(owner, repo).create_issue(title=title, body=body),
        )
        logger.info(f"Created issue #{issue.number} in {owner}/{repo}")
        return to_remote_issue(issue)

    def edit_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        body: Optional[str] = None,
        state: Optional[str] = None,
    ) -> RemoteIssue:
        """Update body and/or state of an existing issue"""
        kwargs = {}
        if body is not None:
            kwargs["body"] = body
        if state is not None:
            kwargs["state"] = state

        def _edit():
            issue = self._repo(owner, repo).get_issue(number)
            issue.edit(**kwargs)
            return issue

        issue = self._call(f"edit issue #{number} in {owner}/{repo}", _edit)
        logger.info(f"Updated issue #{number} in {owner}/{repo}: {sorted(kwargs)}")
        return to_remote_issue(issue)

    def close_issue(self, owner: str, repo: str, number: int) -> RemoteIssue:
        """Close an issue"""
        return self.edit_issue(owner, repo, number, state="closed")

    def get_timeline(self, owner: str, repo: str, number: int) -> List[TimelineEvent]:
        """Get the issue timeline, oldest event first"""

        def _timeline():
            issue = self._repo(owner, repo).get_issue(number)
            return [
                TimelineEvent(kind=_event_kind(getattr(e, "event", None)),
                              created_at=getattr(e, "created_at", None))
                for e in issue.get_timeline()
            ]

        return self._call(f"timeline for issue #{number} in {owner}/{repo}", _timeline)

"""Find the GitHub issue that corresponds to a declared title"""
from typing import Iterable, Optional

from app.services.github_client import RemoteIssue


def _fold(title: Optional[str]) -> str:
    return (title or "").casefold()


def find_issue(title: str, issues: Iterable[RemoteIssue]) -> Optional[RemoteIssue]:
    """Return the first issue whose title equals `title`, ignoring case.

    Whole-title comparison only: "Bug" matches "bug" but not "Bug report".
    Ties go to whichever issue GitHub listed first.
    """
    wanted = _fold(title)
    for issue in issues:
        if _fold(issue.title) == wanted:
            return issue
    return None

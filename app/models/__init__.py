"""Database models"""

from app.models.base import Base
from app.models.github_issue import GithubIssue

__all__ = [
    "Base",
    "GithubIssue",
]
